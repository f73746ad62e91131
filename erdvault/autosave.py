import logging
import threading

logger = logging.getLogger("ERDVault")

from .config import normalize_config


class AutoSaver:
    """Background timer that autosaves a session every ``interval`` seconds."""

    def __init__(self, session, interval=300, on_error=None):
        self.session = session
        self.interval = float(interval)
        self.on_error = on_error
        self._stop = threading.Event()
        self._thread = None

    @classmethod
    def from_config(cls, session, config, on_error=None):
        config = normalize_config(config)
        if not config["autosave_enabled"]:
            return None
        return cls(session, interval=config["autosave_interval"], on_error=on_error)

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def tick(self):
        try:
            return self.session.autosave()
        except Exception as exc:
            # The timer outlives a failed tick; the session stays dirty for the next one.
            logger.exception("autosave failed for %s", self.session.diagram_id)
            if self.on_error is not None:
                self.on_error(exc)
            return False

    def _run(self):
        while not self._stop.wait(self.interval):
            self.tick()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="erdvault-autosave", daemon=True)
        self._thread.start()
        logger.info("autosave every %ss", self.interval)

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
