import asyncio
from typing import Dict, List, Optional

from aiortc.contrib.media import MediaPlayer, MediaRelay
from pydantic import BaseModel

from logging_config import get_logger

logger = get_logger(__name__)


class MediaConstraints(BaseModel):
    """Which local devices to open and how. Video limits are passed to ffmpeg."""

    audio: bool = True
    video: bool = True
    max_width: int = 640
    max_height: int = 480
    max_frame_rate: int = 20
    video_device: str = "/dev/video0"
    video_format: Optional[str] = "v4l2"
    audio_device: str = "default"
    audio_format: Optional[str] = "pulse"

    def video_options(self) -> Dict[str, str]:
        return {
            "video_size": f"{self.max_width}x{self.max_height}",
            "framerate": str(self.max_frame_rate),
        }


class LocalMedia:
    """Camera and microphone shared by every peer connection of a client.

    Devices are opened once on first use. Each peer gets its own relayed
    copy of the source tracks.
    """

    def __init__(self, constraints: Optional[MediaConstraints] = None, player_factory=MediaPlayer):
        self.constraints = constraints or MediaConstraints()
        self._player_factory = player_factory
        self._players = []
        self._tracks: Optional[List] = None
        self._relay = MediaRelay()
        self._lock = asyncio.Lock()

    async def acquire(self) -> List:
        async with self._lock:
            if self._tracks is not None:
                return self._tracks
            loop = asyncio.get_running_loop()
            tracks = []
            if self.constraints.video:
                player = await loop.run_in_executor(
                    None,
                    lambda: self._player_factory(
                        self.constraints.video_device,
                        format=self.constraints.video_format,
                        options=self.constraints.video_options(),
                    ),
                )
                self._players.append(player)
                if player.video is not None:
                    tracks.append(player.video)
            if self.constraints.audio:
                player = await loop.run_in_executor(
                    None,
                    lambda: self._player_factory(self.constraints.audio_device, format=self.constraints.audio_format),
                )
                self._players.append(player)
                if player.audio is not None:
                    tracks.append(player.audio)
            logger.info(f"Opened local media: {[t.kind for t in tracks]}")
            self._tracks = tracks
            return tracks

    async def tracks_for_peer(self) -> List:
        return [self._relay.subscribe(track) for track in await self.acquire()]

    def stop(self):
        for track in self._tracks or []:
            track.stop()
        if self._tracks:
            logger.info(f"Stopped {len(self._tracks)} local tracks")
