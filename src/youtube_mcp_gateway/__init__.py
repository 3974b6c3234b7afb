"""
YouTube MCP Gateway
===================

An OAuth 2.1 authorization and session gateway that exposes YouTube Data and
YouTube Analytics tools to Model Context Protocol clients.

- Google login via the authorization-code flow, with the pending request held
  in a signed continuation cookie
- Downstream grants, codes and bearer tokens minted by the gateway itself
- Two MCP transports (``/sse`` streaming, ``/mcp`` unary) resolving every
  request to the same per-grant session and Props
- Tools receive Props (the user's Google access token and identity) on
  every call

Usage:
    from youtube_mcp_gateway.gateway import create_app

    app = create_app()
"""

__version__ = "1.0.0"
