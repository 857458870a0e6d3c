from coda.services.now_playing_service import NowPlayingService, RemoteCommandService
from coda.services.queue_service import QueueService

__all__ = [
    "NowPlayingService",
    "QueueService",
    "RemoteCommandService",
]
