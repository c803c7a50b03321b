from .client import PipedriveClient

__all__ = ['PipedriveClient']
