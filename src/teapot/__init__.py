"""Teapot: a blocklisting DNS-over-HTTPS proxy"""
