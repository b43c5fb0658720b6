import os
import re
import httpx
import atexit
import orjson
import shutil
import asyncio
import tempfile
import websockets
from pathlib import Path
from contextlib import suppress
from subprocess import Popen, PIPE

from pagemonitor.tab import Tab
from pagemonitor import defaults
from pagemonitor.base import PageMonitorBase
from pagemonitor.helpers import repr_params
from pagemonitor.devices import get_device
from pagemonitor.errors import BrowserError, DevToolsProtocolError


class Browser(PageMonitorBase):
    possible_chrome_binaries = ["chromium", "chromium-browser", "chrome", "chrome-browser", "google-chrome"]

    debugging_port = 9222

    base_chrome_flags = [
        "--disable-features=MediaRouter",
        "--disable-client-side-phishing-detection",
        "--disable-default-apps",
        "--hide-scrollbars",
        "--mute-audio",
        "--no-default-browser-check",
        "--no-first-run",
        "--deny-permission-prompts",
        f"--remote-debugging-port={debugging_port}",
        "--headless=new",
        "--enable-automation",
        "--ignore-certificate-errors",
    ]

    def __init__(
        self,
        chrome_path=None,
        device=defaults.device,
        quality=defaults.quality,
        wait_event=defaults.wait_event,
        wait_timeout=defaults.wait_timeout,
        proxy=None,
    ):
        super().__init__()
        self.device = get_device(device)
        atexit.register(self.cleanup)
        self.chrome_process = None
        self.chrome_path = chrome_path
        self.chrome_version_regex = re.compile(r"[A-za-z][A-Za-z ]+([\d\.]+)")
        self.version = None
        self.temp_dir = Path(tempfile.gettempdir()) / ".pagemonitor"
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.proxy = proxy
        self.quality = quality
        self.wait_event = wait_event
        self.wait_timeout = float(wait_timeout)

        self.chrome_flags = self.base_chrome_flags + [
            f"--user-data-dir={self.temp_dir}",
        ]
        if self.proxy:
            self.chrome_flags += [f"--proxy-server={self.proxy}"]
        if os.geteuid() == 0:
            self.log.info("Running as root, adding --no-sandbox")
            self.chrome_flags += ["--no-sandbox"]

        self.websocket_uri = None
        self.websocket = None
        self.pending_requests = {}
        self.tabs = {}
        self.event_queues = {}
        self._commands = {}

        self._closed = False
        self._current_message_id = 0
        self._message_id_lock = asyncio.Lock()
        self._tab_lock = asyncio.Lock()
        self._message_handler_task = None

    async def screenshot(self, url):
        """
        Capture a full-content JPEG of `url` in a fresh tab.
        """
        tab = None
        try:
            tab = await self.new_tab()
            return await tab.full_screenshot(
                url,
                quality=self.quality,
                device=self.device,
                event_name=self.wait_event,
                timeout=self.wait_timeout,
            )
        finally:
            if tab is not None:
                with suppress(Exception):
                    await tab.close()

    async def new_tab(self):
        tab = Tab(self)
        await tab.create()
        return tab

    async def start(self):
        await self.detect_chrome_path()
        await self._start_chrome()
        await self._start_message_handler()

    async def handle_event(self, event):
        # Handle response to a specific request
        if "id" in event:
            message_id = event["id"]
            if message_id in self.pending_requests:
                future = self.pending_requests.pop(message_id)
                if future.done():
                    return
                if "error" in event:
                    error = event["error"]
                    future.set_exception(DevToolsProtocolError(f"{error}"))
                else:
                    future.set_result(event.get("result", {}))

        # Handle browser events
        elif "method" in event:
            method = event["method"]

            # distribute to session
            session_id = event.get("sessionId", None)
            if session_id:
                try:
                    event_queue = self.event_queues[session_id]
                    await event_queue.put(event)
                except KeyError:
                    if method not in ["Inspector.detached", "Page.frameDetached"]:
                        self.log.debug(f"No handler for event {method} in session {session_id}")
        else:
            self.log.error(f"Unknown message: {event}")

    async def request(self, command, sessionId=None, **params):
        message_id = await self._next_message_id()
        future = asyncio.get_running_loop().create_future()
        self.pending_requests[message_id] = future
        try:
            request = await self._build_request(command, message_id, **params)
            if sessionId:
                request["sessionId"] = sessionId
            await self._send_request(request)
            return await future
        except DevToolsProtocolError as e:
            error = DevToolsProtocolError(f"Error sending command: {command}({repr_params(params)}): {e}")
            self.log.info(error)
            raise error
        finally:
            self.pending_requests.pop(message_id, None)

    async def _build_request(self, command, message_id, **params):
        # make sure command is supported
        domain, subcommand = command.split(".")
        if domain not in self._commands:
            raise DevToolsProtocolError(
                f"domain {domain} not supported (supported domains: {','.join(self._commands.keys())})"
            )
        supported_commands = self._commands[domain]
        if subcommand not in supported_commands:
            raise DevToolsProtocolError(
                f"command {subcommand} not supported for domain {domain} (supported commands: {','.join(supported_commands)})"
            )

        request = {"id": message_id, "method": command, "params": params}
        return request

    async def _send_request(self, request):
        if self.websocket is None:
            raise BrowserError("You must call start() on the browser before making a request")
        self.log.debug(f"SENDING REQUEST: {request}")
        try:
            await self.websocket.send(orjson.dumps(request).decode("utf-8"))
        except websockets.ConnectionClosed as e:
            raise BrowserError(f"Connection to Chrome was lost while sending {request['method']}: {e}") from e

    async def detect_chrome_path(self):
        # enumerate chrome path
        if self.chrome_path is None:
            for i in self.possible_chrome_binaries:
                chrome_path = shutil.which(i)
                if chrome_path:
                    # run chrome_path --version
                    process = await asyncio.create_subprocess_exec(chrome_path, "--version", stdout=PIPE, stderr=PIPE)
                    stdout, stderr = await process.communicate()

                    if process.returncode != 0:
                        self.log.error(f"Failed to get version for {chrome_path}: {stderr.decode().strip()}")
                        continue

                    version_output = stdout.decode().strip()
                    match = self.chrome_version_regex.search(version_output)
                    if match:
                        self.log.info(f"Found Chrome version {match.group(1)}")
                        self.version = match.group(1)
                        self.chrome_path = chrome_path
                        break
                    else:
                        self.log.error(f"Version output did not match expected format: {version_output}")

        if not self.chrome_path:
            raise BrowserError(
                f"Chrome executable not found (tried: {', '.join(self.possible_chrome_binaries)}), use --chrome to specify one"
            )

    @property
    def debugging_url(self):
        return f"http://127.0.0.1:{self.debugging_port}"

    async def _start_chrome(self):
        # start chrome process
        if self.chrome_process is None:
            chrome_command = [
                self.chrome_path,
            ] + self.chrome_flags
            self.log.debug("Executing chrome command: " + " ".join(chrome_command))
            try:
                self.chrome_process = Popen(chrome_command, stdout=PIPE, stderr=PIPE)
            except OSError as e:
                raise BrowserError(f"Failed to execute {self.chrome_path}: {e}")

        # loop until we get the chrome uri
        while self.websocket_uri is None:
            # if chrome process has exited, raise an exception
            return_code = self.chrome_process.poll()
            if return_code is not None:
                raise BrowserError(
                    f"Chrome process exited with code {return_code}\n{self.chrome_process.stderr.read().decode()}"
                )
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.get(f"{self.debugging_url}/json/version")
                    self.websocket_uri = response.json()["webSocketDebuggerUrl"]
            except Exception as e:
                self.log.debug(f"Error getting Chrome URI: {e}, retrying...")
                await asyncio.sleep(0.1)

        # connect to chrome
        self.websocket = await websockets.connect(self.websocket_uri, max_size=500_000_000)

        # enumerate supported CDP commands
        await self._enum_commands()

    async def _enum_commands(self):
        # get supported CDP commands
        async with httpx.AsyncClient() as client:
            self._protocol = (await client.get(f"{self.debugging_url}/json/protocol")).json()
            self._commands = {}
            for domain in self._protocol["domains"]:
                domain_name = domain["domain"]
                commands = set(command["name"] for command in domain.get("commands", []))
                self._commands[domain_name] = commands

    async def _start_message_handler(self):
        self._message_handler_task = asyncio.create_task(self._message_handler())

    async def _message_handler(self):
        """Background task to handle incoming messages"""
        try:
            while self.websocket and not self._closed:
                message = await self.websocket.recv()
                response = orjson.loads(message)
                self.log.debug(f"GOT MESSAGE: {response}")
                await self.handle_event(response)

        except websockets.ConnectionClosed as e:
            self.log.info(f"WebSocket connection closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.critical(f"Error in message handler: {e}")
            import traceback

            self.log.critical(traceback.format_exc())
        finally:
            self._fail_pending_requests()
            await self.stop()

    def _fail_pending_requests(self):
        # nobody will answer these once the websocket is gone
        for future in self.pending_requests.values():
            if not future.done():
                future.set_exception(BrowserError("Connection to Chrome was lost"))
        self.pending_requests.clear()
        self._fail_tabs()

    def _fail_tabs(self):
        # no more events will arrive for any tab
        for tab in list(self.tabs.values()):
            tab.fail(BrowserError("Connection to Chrome was lost"))

    async def stop(self):
        if not self._closed:
            self.log.info("STOPPING BROWSER")
            self._closed = True
            self._fail_tabs()
            if self.websocket:
                with suppress(Exception):
                    await self.websocket.close()
            if self.chrome_process:
                with suppress(Exception):
                    self.chrome_process.terminate()
        self._closed = True

    def cleanup(self):
        with suppress(AttributeError):
            shutil.rmtree(self.temp_dir, ignore_errors=True)
        with suppress(Exception):
            self.chrome_process.terminate()

    async def _next_message_id(self):
        async with self._message_id_lock:
            message_id = int(self._current_message_id)
            self._current_message_id += 1
        return message_id

    def __del__(self):
        self.cleanup()
