from composer_rest_server.utils.logging import configure_logging, configure_structlog, get_logger

__all__ = ['configure_logging', 'configure_structlog', 'get_logger']
