"""Call-control (CXML/TwiML) document rendering"""

from .builder import ResponseBuilder, ResponseBuilderConfig

__all__ = ["ResponseBuilder", "ResponseBuilderConfig"]
