"""Outbound transports used to reach upstream resolvers."""
