"""TCP server for live coding a running engine.

Enable the server by calling ``engine.live()`` before ``engine.play()``.
The server listens on a TCP port (default 5555) and accepts pattern code
from any source: the bundled REPL client, an editor plugin, or a raw
socket connection.

Protocol
────────
Messages are delimited by ``\\x04`` (ASCII EOT). The server reads until it
receives this sentinel, evaluates the code with ``Engine.evaluate()`` and
sends back a short report followed by ``\\x04``.  The special message
``:info`` returns the engine state instead.

Code is run by the pattern interpreter, not by Python's ``eval``; the
server still binds to ``localhost`` only.
"""

import asyncio
import json
import logging
import typing

if typing.TYPE_CHECKING:
	from tidepool.engine import Engine


logger = logging.getLogger(__name__)

SENTINEL = b"\x04"
INFO_COMMAND = ":info"


class LiveServer:

	"""Async TCP server that feeds code into a running engine."""

	def __init__ (self, engine: "Engine", port: int = 5555) -> None:

		"""Store a reference to the engine and the port to listen on."""

		self._engine = engine
		self._port = port
		self._server: typing.Optional[asyncio.AbstractServer] = None

	@property
	def port (self) -> int:
		return self._port

	async def start (self) -> None:

		"""Start listening for connections on localhost."""

		self._server = await asyncio.start_server(
			self._handle_connection,
			host = "127.0.0.1",
			port = self._port
		)

		# Port 0 asks the OS for a free port; report the real one.
		sockets = self._server.sockets or []

		if sockets:
			self._port = sockets[0].getsockname()[1]

		logger.info(f"Live server listening on 127.0.0.1:{self._port}")

	async def stop (self) -> None:

		"""Close the server and wait for it to shut down."""

		if self._server is not None:
			self._server.close()
			await self._server.wait_closed()
			self._server = None
			logger.info("Live server stopped")

	async def _handle_connection (self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:

		"""Handle a single client connection with a read/evaluate loop."""

		peer = writer.get_extra_info("peername")
		logger.info(f"Live client connected: {peer}")

		try:

			while True:

				code = await self._read_message(reader)

				if code is None:
					break

				# Evaluation runs on the event loop thread: it starts channel tasks.
				response = self._respond(code)
				writer.write(response.encode() + SENTINEL)
				await writer.drain()

		except ConnectionResetError:
			logger.info(f"Live client disconnected (reset): {peer}")

		except Exception as exc:
			logger.warning(f"Live connection error: {exc}")

		finally:
			writer.close()
			try:
				await writer.wait_closed()
			except (ConnectionError, OSError):
				pass
			logger.info(f"Live client disconnected: {peer}")

	async def _read_message (self, reader: asyncio.StreamReader) -> typing.Optional[str]:

		"""Read bytes until the sentinel or EOF, returning the decoded string or None."""

		chunks: typing.List[bytes] = []

		while True:

			try:
				chunk = await reader.read(4096)
			except ConnectionResetError:
				return None

			if not chunk:
				return None

			if SENTINEL in chunk:
				before, _, _ = chunk.partition(SENTINEL)
				chunks.append(before)
				break

			chunks.append(chunk)

		data = b"".join(chunks).decode("utf-8").strip()

		return data if data else None

	def _respond (self, code: str) -> str:

		"""Evaluate the code (or answer ``:info``) and format the reply."""

		if code == INFO_COMMAND:
			return json.dumps(self._engine.live_info())

		result = self._engine.evaluate(code)

		if not result.success:
			return f"Error: {result.error}"

		lines = [f"OK: {result.active_patterns} pattern(s) playing"]
		lines.extend(result.errors)

		return "\n".join(lines)
