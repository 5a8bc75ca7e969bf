"""
API server package: HTTP/REST interface over the risk engine.
"""
