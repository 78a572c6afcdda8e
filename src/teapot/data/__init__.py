"""Static resources bundled with teapot: the default blocklist and error pages."""
