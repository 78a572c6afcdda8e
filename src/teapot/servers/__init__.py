"""HTTP listeners exposing the DoH pipeline."""
