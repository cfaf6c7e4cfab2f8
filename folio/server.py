"""Development server for Folio.

Serves the site straight from memory with live reload:
- Pages are rendered from the loaded content set, cached by page id and
  served with ETags and gzip/brotli negotiation.
- Content changes are debounced into a single reload that swaps in a new
  content set only once it has loaded completely.
- Image changes regenerate variants in the cache directory, one run at a
  time.
- Connected browsers are told to reload over a websocket.

Key classes:
- SiteState: Immutable snapshot of one loaded content set.
- ReloadCoordinator: Debounces, serializes and applies content reloads.
- ImageRegenerator: Debounces and serializes image variant regeneration.
- DevServer: Wires the coordinators, HTTP server, websocket and watcher.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import mimetypes
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .assets import is_theme_asset
from .build import load_config, load_redirect_rules
from .cache import CacheManager
from .compression import CODECS
from .content import ContentLoader, LoadResult
from .errors import BuildError, FolioError, PreRenderError
from .feeds import create_default_feed_registry
from .images import VARIANT_RE, collect_valid_hashes, prune_orphans, run_optimize_images
from .models import RedirectRule
from .pages import PageRenderer
from .redirects import REDIRECT_STATUS_CODES, match_redirect
from .renderers import resolve_content_path
from .templates import TemplateEngine, resolve_theme_dir
from .utils import (
    is_content_file,
    is_in_drafts_folder,
    is_raster_image,
    is_text_output,
    should_ignore,
)

logger = logging.getLogger(__name__)

# Documents generated from the entry set and cached by name
DYNAMIC_DOCUMENTS = {
    "/search.json": ("search.json", "application/json; charset=utf-8"),
    "/rss.xml": ("rss.xml", "application/rss+xml; charset=utf-8"),
    "/sitemap.xml": ("sitemap.xml", "application/xml; charset=utf-8"),
}

HTML_TYPE = "text/html; charset=utf-8"

RELOAD_SCRIPT_TEMPLATE = """<script>
(() => {{
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'reload') location.reload();
  }};
}})();
</script>"""


def inject_reload_script(html: str, ws_port: int) -> str:
    """Append the live-reload client before ``</body>`` (or at the end)."""
    script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=ws_port)
    if "</body>" in html:
        return html.replace("</body>", f"{script}</body>", 1)
    return html + script


@dataclass(frozen=True)
class SiteState:
    """One fully loaded content set and everything derived from it.

    A state is never modified; a reload builds a new one and replaces the
    coordinator's reference in a single assignment.
    """

    loaded: LoadResult
    renderer: PageRenderer
    rules: list[RedirectRule]
    theme_dir: Path


def load_site_state(project_root: Path, config: dict[str, Any]) -> SiteState:
    """Load content, theme and redirects in live mode.

    Raises:
        MissingTemplateError: The theme lacks a mandatory template.
        RedirectValidationError: The redirect map is invalid.
    """
    loaded = ContentLoader(project_root / config["content_dir"], config, live=True).load()
    theme_dir = resolve_theme_dir(project_root, config.get("theme"))
    engine = TemplateEngine(theme_dir, config)
    rules = load_redirect_rules(project_root, config) or []
    return SiteState(
        loaded=loaded,
        renderer=PageRenderer(engine, loaded, config),
        rules=rules,
        theme_dir=theme_dir,
    )


def pre_render(
    renderer: PageRenderer,
    cache: CacheManager,
    strict: bool = True,
    decorate: Callable[[str], str] = lambda html: html,
) -> tuple[int, int]:
    """Render every page into the cache.

    Args:
        renderer: Renderer of the current content set.
        cache: Cache to fill.
        strict: Raise on the first page that fails instead of skipping it.
        decorate: Applied to each page before caching.

    Returns:
        Tuple of (pages rendered, pages that failed).

    Raises:
        PreRenderError: A page failed and ``strict`` is set.
    """
    rendered = failed = 0
    for page_id in renderer.page_ids():
        try:
            html = renderer.render_page_id(page_id)
        except BuildError as exc:
            if strict:
                raise PreRenderError(page_id, exc) from exc
            failed += 1
            logger.error("Failed to pre-render %s: %s", page_id, exc)
            continue
        if html is not None:
            cache.set_rendered(page_id, decorate(html))
            rendered += 1
    logger.info("Pre-rendered %d pages", rendered)
    return rendered, failed


def pre_compress(cache: CacheManager) -> int:
    """Compress every cached page with every codec."""
    count = 0
    for html in list(cache.rendered.values()):
        for codec in CODECS:
            cache.get_compressed(html, codec)
            count += 1
    return count


class ReloadCoordinator:
    """Turns bursts of content changes into single, non-overlapping reloads.

    ``schedule`` restarts a debounce timer on every call; when the timer
    fires, ``reload`` runs. A reload that starts while another is running
    is dropped, not queued.

    Attributes:
        state: The content set currently served.
        cache: Shared cache, cleared and re-warmed after every reload.
    """

    def __init__(
        self,
        state: SiteState,
        loader: Callable[[], SiteState],
        cache: CacheManager,
        config: Mapping[str, Any],
        decorate: Callable[[str], str] = lambda html: html,
        on_reload: Callable[[], None] | None = None,
    ):
        self.state = state
        self.cache = cache
        self._loader = loader
        self._config = config
        self._decorate = decorate
        self._on_reload = on_reload
        self._reload_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self.debounce_seconds = float(config.get("debounce_seconds", 0.5))

    def schedule(self) -> None:
        """Request a reload after the debounce delay, restarting the delay."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self.reload)
            self._timer.daemon = True
            self._timer.start()

    def warm(self) -> None:
        """Pre-render (and optionally pre-compress) the current state.

        Raises:
            PreRenderError: A page failed and ``strict_pre_render`` is set.
        """
        if self._config.get("disable_pre_render"):
            return
        pre_render(
            self.state.renderer,
            self.cache,
            strict=bool(self._config.get("strict_pre_render", True)),
            decorate=self._decorate,
        )
        if self._config.get("pre_compress_content"):
            pre_compress(self.cache)

    def reload(self) -> bool:
        """Reload the content set now.

        Returns:
            True if a new state was swapped in; False if the reload was
            dropped or failed, in which case the previous state keeps
            serving.
        """
        if not self._reload_lock.acquire(blocking=False):
            logger.warning("Reload already in progress, dropping change")
            return False
        try:
            started = time.monotonic()
            try:
                new_state = self._loader()
            except (FolioError, OSError) as exc:
                logger.error("Reload failed, keeping previous content: %s", exc)
                return False
            self.state = new_state
            freed = self.cache.clear_all()
            logger.debug("Cleared %d cached items", freed)
            try:
                self.warm()
            except PreRenderError as exc:
                logger.error("%s", exc)
            logger.info(
                "Reloaded %d entries in %.0f ms",
                len(new_state.loaded.entries),
                (time.monotonic() - started) * 1000,
            )
        finally:
            self._reload_lock.release()
        if self._on_reload is not None:
            self._on_reload()
        return True

    def cancel(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class ImageRegenerator:
    """Regenerates image variants after image changes, one run at a time.

    Attributes:
        pending: Set by ``schedule``, cleared when a run picks the work up.
    """

    def __init__(
        self,
        state_getter: Callable[[], SiteState],
        cache_dir: Path,
        debounce_seconds: float = 0.5,
    ):
        self._state_getter = state_getter
        self.cache_dir = cache_dir
        self.debounce_seconds = debounce_seconds
        self.pending = False
        self._running = threading.Lock()
        self._timer_lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def schedule(self) -> None:
        self.pending = True
        self._start_timer()

    def _start_timer(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self.run)
            self._timer.daemon = True
            self._timer.start()

    def run(self) -> bool:
        """Optimize the current state's images into the cache and prune orphans.

        Returns:
            False if another run was already in flight.
        """
        if not self._running.acquire(blocking=False):
            logger.debug("Image regeneration already running")
            return False
        try:
            self.pending = False
            refs = self._state_getter().loaded.all_images()
            result = run_optimize_images(refs, self.cache_dir)
            prune_orphans(self.cache_dir, collect_valid_hashes(refs))
            if result.processed or result.failed:
                logger.info(
                    "Regenerated %d images (%d failed)", result.processed, result.failed
                )
        finally:
            self._running.release()
        if self.pending:
            self._start_timer()
        return True

    def cancel(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


@dataclass
class Response:
    """An HTTP response produced by ``DevServer.respond``."""

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


def _preferred_codec(accept_encoding: str) -> str | None:
    accepted = {token.split(";")[0].strip().lower() for token in accept_encoding.split(",")}
    for codec in ("br", "gzip"):
        if codec in accepted:
            return codec
    return None


class _LiveHandler(BaseHTTPRequestHandler):
    """HTTP request handler delegating to ``DevServer.respond``."""

    dev_server: DevServer

    def do_GET(self):
        self._send(self.dev_server.respond(self.path, self.headers))

    def do_HEAD(self):
        response = self.dev_server.respond(self.path, self.headers)
        response.body = b""
        self._send(response, head=True)

    def _send(self, response: Response, head: bool = False) -> None:
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        if not head:
            self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if response.body:
            self.wfile.write(response.body)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class DevServer:
    """Development server with live reload functionality.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration.
        cache: Cache shared by the request layer and the coordinators.
        http_port: Port for HTTP server.
        ws_port: Port for WebSocket connections.
        coordinator: Reload coordinator; created by ``load``.
        images: Image regenerator; created by ``load``.
    """

    def __init__(self, project_root: Path, http_port: int | None = None, ws_port: int | None = None):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            http_port: Optional override for HTTP port.
            ws_port: Optional override for the websocket port.
        """
        self.project_root = project_root
        self.config = load_config(project_root)
        self.http_port = int(http_port or self.config["port"])
        self.ws_port = int(ws_port or (self.http_port + 1 if http_port else self.config["ws_port"]))
        self.content_dir = project_root / self.config["content_dir"]
        self.cache_dir = project_root / self.config["cache_dir"]
        self.cache = CacheManager()
        self.feeds = create_default_feed_registry()
        self.coordinator: ReloadCoordinator | None = None
        self.images: ImageRegenerator | None = None
        self._observer: Observer | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()

    @property
    def state(self) -> SiteState:
        return self.coordinator.state

    def load(self) -> None:
        """Load the initial content set and warm the cache.

        Raises:
            FolioError: The theme, redirects or strict pre-rendering failed.
        """
        state = load_site_state(self.project_root, self.config)
        self.coordinator = ReloadCoordinator(
            state,
            functools.partial(load_site_state, self.project_root, self.config),
            self.cache,
            self.config,
            decorate=self._decorate,
            on_reload=self._after_reload,
        )
        self.images = ImageRegenerator(
            lambda: self.coordinator.state,
            self.cache_dir,
            float(self.config.get("debounce_seconds", 0.5)),
        )
        self.coordinator.warm()

    def _decorate(self, html: str) -> str:
        return inject_reload_script(html, self.ws_port)

    def _after_reload(self) -> None:
        self.images.schedule()
        self._broadcast_reload()

    def start(self) -> None:  # pragma: no cover - integration path
        self.load()
        self.images.run()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._start_watcher()
        handler = type("_BoundLiveHandler", (_LiveHandler,), {"dev_server": self})
        self._httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at http://localhost:%d", self.content_dir, self.http_port)
        try:
            self._httpd.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
        if self.coordinator:
            self.coordinator.cancel()
        if self.images:
            self.images.cancel()
        if self._httpd:
            self._httpd.server_close()
        self._loop.call_soon_threadsafe(self._loop.stop)

    # Request layer

    def respond(self, raw_path: str, headers: Mapping[str, str] | None = None) -> Response:
        """Produce the response for a GET request path."""
        headers = headers or {}
        path = unquote(urlsplit(raw_path).path) or "/"
        # Generation before state: fills from a replaced state are discarded
        generation = self.cache.generation
        state = self.state

        if path in DYNAMIC_DOCUMENTS:
            name, content_type = DYNAMIC_DOCUMENTS[path]
            return self._content(self.dynamic_document(name, state, generation), content_type, headers)

        rule = match_redirect(state.rules, path)
        if rule is not None:
            return Response(
                rule.status_code,
                f"{rule.status_code} {REDIRECT_STATUS_CODES[rule.status_code]}".encode(),
                {"Location": rule.target, "Content-Type": "text/plain; charset=utf-8"},
            )

        if path.startswith("/assets/"):
            if not is_theme_asset(path[len("/assets/") :]):
                return self.not_found(headers)
            return self._file(state.theme_dir, path[len("/assets") :], headers)

        if VARIANT_RE.match(path.rsplit("/", 1)[-1]):
            return self._file(self.cache_dir, path, headers)

        page_id = state.renderer.page_id_for_path(path)
        if page_id is not None:
            if not path.endswith("/"):
                return Response(301, b"", {"Location": path + "/"})
            html = self.cache.get_rendered(page_id)
            if html is None:
                html = self._decorate(state.renderer.render_page_id(page_id) or "")
                self.cache.set_rendered(page_id, html, generation)
            return self._content(html, HTML_TYPE, headers)

        segments = path.split("/")
        name = segments[-1]
        if (
            name
            and not any(should_ignore(part) for part in segments)
            and not is_in_drafts_folder(path)
            and not is_content_file(name)
            and not is_raster_image(name)
        ):
            response = self._file(self.content_dir, path, headers)
            if response.status != 404:
                return response
        return self.not_found(headers)

    def dynamic_document(
        self, name: str, state: SiteState | None = None, generation: int | None = None
    ) -> str:
        content = self.cache.get_dynamic(name)
        if content is None:
            state = state or self.state
            generator = self.feeds.get(name)
            content = generator.generate(state.renderer.entries, self.config)
            self.cache.set_dynamic(name, content, generation)
        return content

    def not_found(self, headers: Mapping[str, str]) -> Response:
        html = self._decorate(self.state.renderer.render_not_found())
        response = self._content(html, HTML_TYPE, headers)
        response.status = 404
        return response

    def _content(self, content: str | bytes, content_type: str, headers: Mapping[str, str]) -> Response:
        """Respond with ETag validation and negotiated compression."""
        data = content.encode("utf-8") if isinstance(content, str) else content
        etag = f'"{self.cache.etag(data)}"'
        response_headers = {
            "Content-Type": content_type,
            "ETag": etag,
            "Cache-Control": "no-cache",
            "Vary": "Accept-Encoding",
        }
        if headers.get("If-None-Match") == etag:
            return Response(304, b"", response_headers)
        codec = _preferred_codec(headers.get("Accept-Encoding", ""))
        if codec is not None:
            _etag, data = self.cache.get_compressed(data, codec)
            response_headers["Content-Encoding"] = codec
        return Response(200, data, response_headers)

    def _file(self, root: Path, path: str, headers: Mapping[str, str]) -> Response:
        resolved = resolve_content_path(root, root, path)
        if resolved is None or not resolved.is_file():
            return self.not_found(headers)
        content_type = mimetypes.guess_type(resolved.name)[0] or "application/octet-stream"
        if is_text_output(resolved.name):
            content_type += "; charset=utf-8"
            return self._content(resolved.read_bytes(), content_type, headers)
        return Response(200, resolved.read_bytes(), {"Content-Type": content_type})

    # Live reload

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error("WebSocket server failed to start (port %d): %s", self.ws_port, exc)

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast_reload(self) -> None:
        if not self._loop.is_running():
            return
        message = json.dumps({"type": "reload"})
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in self._ws_clients:
            try:
                await ws.send(message)
            except websockets.ConnectionClosed:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    def _start_watcher(self) -> None:  # pragma: no cover - integration path
        handler = _ChangeHandler(self)
        observer = Observer()
        for watch_path in (self.content_dir, self.state.theme_dir):
            if watch_path.exists():
                observer.schedule(handler, str(watch_path), recursive=True)
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer

    def handle_change(self, path: Path) -> None:
        """Route one changed path to the image or the content pipeline."""
        try:
            path.relative_to(self.cache_dir)
            return
        except ValueError:
            pass
        if should_ignore(path.name):
            return
        if is_raster_image(path.name):
            self.images.schedule()
        else:
            self.coordinator.schedule()


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer):
        super().__init__()
        self.server = server

    def on_any_event(self, event):
        if event.is_directory:
            return
        self.server.handle_change(Path(event.src_path))
