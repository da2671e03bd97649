"""Storage for full-session recordings and their metadata."""

import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, List
from dataclasses import asdict

import soundfile as sf

from ..audio.recorder import FullRecording
from ..models.session import RecordingInfo


logger = logging.getLogger(__name__)


class RecordingStore:
    """Writes each finished recording once, next to a JSON metadata sidecar."""

    def __init__(self, data_dir: str = "./data", audio_format: str = "ogg"):
        """Initialize recording store.

        Args:
            data_dir: Base directory for storing all data
            audio_format: File extension for saved recordings (soundfile infers the format)
        """
        self.data_dir = Path(data_dir)
        self.recordings_dir = self.data_dir / "recordings"
        self.audio_format = audio_format.lower().lstrip('.')

        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"RecordingStore initialized with data_dir: {self.data_dir}")

    def new_recording_id(self) -> str:
        """Timestamp-based id, safe for filenames (e.g. 2024-05-01T10-22-33-123456)."""
        return datetime.now().isoformat().replace(':', '-').replace('.', '-')

    def get_recording_path(self, recording_id: str) -> Path:
        return self.recordings_dir / f"recording-{recording_id}.{self.audio_format}"

    def save_recording(self, recording: FullRecording,
                       recording_id: Optional[str] = None) -> Optional[RecordingInfo]:
        """Persist a full recording and its metadata.

        Args:
            recording: The buffered recording
            recording_id: Id to use; a timestamp id is generated if None

        Returns:
            RecordingInfo, or None if the recording holds no audio
        """
        if recording.is_empty():
            logger.warning("Recording is empty, nothing saved")
            return None

        recording_id = recording_id or self.new_recording_id()
        total_frames = recording.total_frames
        duration = recording.duration_seconds

        audio_path = recording.save(self.get_recording_path(recording_id))
        if audio_path is None:
            return None

        info = RecordingInfo(
            recording_id=recording_id,
            audio_file=audio_path.name,
            created_at=datetime.now(),
            duration_seconds=duration,
            file_size_bytes=audio_path.stat().st_size,
            sample_rate=recording.sample_rate,
            channels=recording.channels,
            total_frames=total_frames,
        )
        self._save_info(info)
        logger.info(f"Recording saved: {audio_path} ({info.file_size_bytes} bytes)")
        return info

    def _info_path(self, recording_id: str) -> Path:
        return self.recordings_dir / f"recording-{recording_id}.json"

    def _save_info(self, info: RecordingInfo) -> None:
        info_dict = asdict(info)
        info_dict['created_at'] = info.created_at.isoformat()
        with open(self._info_path(info.recording_id), 'w') as f:
            json.dump(info_dict, f, indent=2)

    def load_recording_info(self, recording_id: str) -> Optional[RecordingInfo]:
        """Load recording metadata, or None if not found or unreadable."""
        info_file = self._info_path(recording_id)
        if not info_file.exists():
            logger.warning(f"Recording info not found: {info_file}")
            return None

        try:
            with open(info_file, 'r') as f:
                data = json.load(f)
            data['created_at'] = datetime.fromisoformat(data['created_at'])
            return RecordingInfo(**data)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading recording info {info_file}: {e}")
            return None

    def list_recordings(self) -> List[str]:
        """List recording ids, oldest first."""
        ids = [path.stem[len("recording-"):] for path in self.recordings_dir.glob("recording-*.json")]
        ids.sort()
        return ids

    def read_audio(self, recording_id: str):
        """Read a saved recording back as (int16 samples, sample_rate)."""
        return sf.read(str(self.get_recording_path(recording_id)), dtype='int16')
