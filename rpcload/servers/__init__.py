from .rpyc_servers import LoadService, RPyCServer, create_rpyc_connection

__all__ = [
    'LoadService',
    'RPyCServer',
    'create_rpyc_connection',
]
