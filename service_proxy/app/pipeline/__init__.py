"""
Request pipeline: authenticate, strip trust headers, map claims, rewrite path.
"""

from .request_pipeline import ProxyRequest, RequestPipeline, extract_bearer_token, strip_base_url

__all__ = ["ProxyRequest", "RequestPipeline", "extract_bearer_token", "strip_base_url"]
