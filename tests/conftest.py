"""Shared fixtures: in-memory database, fake engines, object store and queue."""
import os
import tempfile
import uuid

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DUBBING_TEMP_DIR"] = tempfile.mkdtemp(prefix="dubbing-tests-")
os.environ["ENVIRONMENT"] = "test"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dubbing.core.database import Base
from dubbing.engines.base import (
    AudioExtractionResult,
    AudioExtractor,
    AudioMixer,
    Downloader,
    DownloadResult,
    EncodingResult,
    ObjectStore,
    Segment,
    SeparationResult,
    SourceSeparator,
    StreamPackage,
    StreamPackager,
    SynthesisResult,
    ThumbnailExtractor,
    Transcriber,
    Transcription,
    Translator,
    VideoEncoder,
    VoiceSynthesizer,
)
from dubbing.engines.registry import EngineSet
from dubbing.models.job import DubbingJob  # noqa: F401
from dubbing.models.source import SourceVideo
from dubbing.services.dubbing import DubbingService
from dubbing.services.pipeline import DubbingPipeline
from dubbing.services.queue import JobQueue
from dubbing.services.workspace import temp_path

CDN = "https://cdn.test"


class EngineBox:
    """Shared state of the fake engines: call log, injected errors, hooks, created files."""

    def __init__(self):
        self.calls = []
        self.errors = {}
        self.hooks = {}
        self.created = []

    def hit(self, name):
        self.calls.append(name)
        hook = self.hooks.get(name)
        if hook is not None:
            hook()
        error = self.errors.get(name)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error

    def write(self, subdir, filename, data=b"data"):
        path = temp_path(subdir, filename)
        with open(path, "wb") as f:
            f.write(data)
        self.created.append(path)
        return path


class FakeDownloader(Downloader):
    def __init__(self, box):
        self.box = box

    def download(self, url, output_name):
        self.box.hit("download")
        path = self.box.write("downloads", f"{output_name}.mp4", b"original video")
        return DownloadResult(file_path=path, format="mp4", resolution="1280x720", duration=12.0, size=14)


class FakeAudioExtractor(AudioExtractor):
    def __init__(self, box):
        self.box = box

    def extract(self, video_path, output_name):
        self.box.hit("extract_audio")
        return AudioExtractionResult(audio_path=self.box.write("audio", f"{output_name}.wav"), duration=12.0)


class FakeSeparator(SourceSeparator):
    def __init__(self, box):
        self.box = box

    def separate(self, audio_path, output_name):
        self.box.hit("separate")
        return SeparationResult(
            voice_path=self.box.write("separated", f"{output_name}_vocals.wav"),
            music_path=self.box.write("separated", f"{output_name}_no_vocals.wav"),
            duration=12.0,
        )


class FakeTranscriber(Transcriber):
    def __init__(self, box):
        self.box = box

    def transcribe(self, audio_path, language):
        self.box.hit("transcribe")
        segments = [Segment(0, 0.0, 1.5, "你好"), Segment(1, 1.5, 3.25, "世界")]
        return Transcription(text="你好 世界", language=language, duration=3.25, segments=segments)


class FakeTranslator(Translator):
    def __init__(self, box):
        self.box = box

    def translate(self, text, source_lang, target_lang):
        self.box.hit("translate")
        return f"[{target_lang}] {text}"


class FakeSynthesizer(VoiceSynthesizer):
    def __init__(self, box):
        self.box = box

    def synthesize(self, text, voice, segments):
        self.box.hit("synthesize")
        path = self.box.write("tts", f"tts_{uuid.uuid4().hex}.wav")
        return SynthesisResult(audio_path=path, duration=3.0, sample_rate=22050, voice=voice)


class FakeMixer(AudioMixer):
    def __init__(self, box):
        self.box = box
        self.music_paths = []

    def mix(self, voice_path, music_path, ducking_db):
        self.box.hit("mix")
        self.music_paths.append(music_path)
        return self.box.write("audio", f"mixed_{uuid.uuid4().hex}.wav")


class FakeEncoder(VideoEncoder):
    def __init__(self, box):
        self.box = box
        self.qualities = []

    def encode(self, video_path, audio_path, quality):
        self.box.hit("encode")
        self.qualities.append(quality)
        path = self.box.write("encoded", f"dubbed_{uuid.uuid4().hex}.mp4", b"dubbed video")
        return EncodingResult(video_path=path, format="mp4", resolution="1280x720", duration=12.0, size=12)


class FakePackager(StreamPackager):
    def __init__(self, box):
        self.box = box

    def package(self, video_path):
        self.box.hit("package")
        work_dir = temp_path("hls", uuid.uuid4().hex)
        os.makedirs(work_dir, exist_ok=True)
        self.box.created.append(work_dir)
        playlist = os.path.join(work_dir, "playlist.m3u8")
        segments = [os.path.join(work_dir, f"segment_{i:03d}.ts") for i in range(2)]
        for path in [playlist] + segments:
            with open(path, "wb") as f:
                f.write(b"#EXTM3U" if path == playlist else b"ts")
        return StreamPackage(
            playlist_path=playlist, segment_paths=segments, work_dir=work_dir, duration=12.0, total_size=4
        )


class FakeThumbnailer(ThumbnailExtractor):
    def __init__(self, box):
        self.box = box

    def extract(self, video_path, timestamp):
        self.box.hit("thumbnail")
        return self.box.write("encoded", f"thumb_{uuid.uuid4().hex}.jpg", b"jpeg")


class InMemoryObjectStore(ObjectStore):
    def __init__(self):
        self.objects = {}
        self.put_hooks = {}
        self.failing_deletes = set()

    def put(self, key, data, content_type, cache_control=None):
        hook = self.put_hooks.get(key)
        if hook is not None:
            hook()
        self.objects[key] = {"data": data, "content_type": content_type, "cache_control": cache_control}
        return f"{CDN}/{key}"

    def delete(self, key):
        if key in self.failing_deletes:
            raise RuntimeError(f"storage unavailable for {key}")
        self.objects.pop(key, None)

    def delete_prefix(self, prefix):
        keys = [key for key in self.objects if key.startswith(prefix)]
        for key in keys:
            self.delete(key)
        return len(keys)


class InMemoryJobQueue(JobQueue):
    def __init__(self):
        self.enqueued = []
        self.removed = []
        self.fail_with = None

    def enqueue(self, job_id, *, max_attempts):
        if self.fail_with is not None:
            raise self.fail_with
        self.enqueued.append((str(job_id), max_attempts))
        return f"task-{len(self.enqueued)}"

    def remove(self, task_id):
        self.removed.append(task_id)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def source(db):
    video = SourceVideo(title="Demo episode", original_video_url="https://videos.test/episode-1.mp4")
    db.add(video)
    db.commit()
    db.refresh(video)
    return video


@pytest.fixture
def box():
    return EngineBox()


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def job_queue():
    return InMemoryJobQueue()


@pytest.fixture
def engines(box, object_store):
    return EngineSet(
        downloader=FakeDownloader(box),
        audio_extractor=FakeAudioExtractor(box),
        separator=FakeSeparator(box),
        transcriber=FakeTranscriber(box),
        translator=FakeTranslator(box),
        synthesizer=FakeSynthesizer(box),
        mixer=FakeMixer(box),
        encoder=FakeEncoder(box),
        packager=FakePackager(box),
        thumbnailer=FakeThumbnailer(box),
        object_store=object_store,
    )


@pytest.fixture
def service(db, job_queue, object_store):
    return DubbingService(db, job_queue, object_store)


@pytest.fixture
def run_attempt(session_factory, engines):
    """Run one delivery the way a worker does, in its own session."""

    def _run(job_id, can_redeliver=True):
        session = session_factory()
        try:
            return DubbingPipeline(session, engines).run(job_id, can_redeliver=can_redeliver)
        finally:
            session.close()

    return _run


@pytest.fixture
def cancel_from_api(session_factory, job_queue, object_store):
    """Cancel a source from a separate session, as a concurrent API request would."""

    def _cancel(source_id):
        session = session_factory()
        try:
            DubbingService(session, job_queue, object_store).delete_video(source_id)
        finally:
            session.close()

    return _cancel
