"""Terminal front end for ``engine.live()``.

Run ``tidepool-live`` (or ``python -m tidepool.live_client --port 5555``)
next to a playing engine and type pattern code.  Lines are collected into
a block; the block goes to the engine on a blank line, unless a bracket
is still open.  Sending a block replaces every playing pattern, and the
reply (``OK: ...`` plus any statement errors) is printed underneath.

Ctrl+C drops the block being typed, Ctrl+D leaves.
"""

import argparse
import json
import socket
import sys
import typing

import tidepool.interpreter
import tidepool.live_server


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5555

PROMPT = "tide> "
CONTINUE_PROMPT = "  ... "


class LiveClient:

	"""Blocking socket connection to a live server, one reply per message."""

	def __init__ (self) -> None:

		self._sock: typing.Optional[socket.socket] = None
		self._pending = b""

	def connect (self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
		self._sock = socket.create_connection((host, port))
		self._pending = b""

	def send (self, code: str) -> str:

		"""
		Send one message and wait for the server's reply.

		Raises:
			ConnectionError: Not connected, or the server went away mid-reply.
		"""

		if self._sock is None:
			raise ConnectionError("Not connected")

		self._sock.sendall(code.encode("utf-8") + tidepool.live_server.SENTINEL)

		return self._read_reply().decode("utf-8")

	def _read_reply (self) -> bytes:

		# Replies end with the sentinel; anything after it belongs to the next reply.
		while tidepool.live_server.SENTINEL not in self._pending:

			data = self._sock.recv(4096) if self._sock is not None else b""

			if not data:
				raise ConnectionError("Server closed connection")

			self._pending += data

		reply, _, self._pending = self._pending.partition(tidepool.live_server.SENTINEL)

		return reply

	def info (self) -> typing.Dict[str, typing.Any]:

		"""The engine's cps, cycle and channel list."""

		return typing.cast(typing.Dict[str, typing.Any], json.loads(self.send(tidepool.live_server.INFO_COMMAND)))

	def close (self) -> None:

		if self._sock is not None:
			self._sock.close()
			self._sock = None


def _is_incomplete (code: str) -> bool:

	"""True while the block has an unclosed bracket outside comments and strings."""

	lines = [tidepool.interpreter.strip_comment(line) for line in code.split("\n")]

	return tidepool.interpreter.bracket_depth("\n".join(lines)) > 0


def read_block (read_line: typing.Callable[[str], str] = input) -> typing.Optional[str]:

	"""
	Collect lines until a blank line with every bracket closed.

	Returns the stripped block, or None when the user cancelled it with
	Ctrl+C or entered nothing.  Ctrl+D (``EOFError``) propagates.
	"""

	lines: typing.List[str] = []
	prompt = PROMPT

	try:

		while True:

			line = read_line(prompt)
			prompt = CONTINUE_PROMPT

			if not line.strip() and not _is_incomplete("\n".join(lines)):
				break

			lines.append(line)

	except KeyboardInterrupt:
		print()
		return None

	block = "\n".join(lines).strip()

	return block or None


def describe (info: typing.Mapping[str, typing.Any]) -> str:

	"""One status line from an ``:info`` reply."""

	channels = ", ".join(str(channel) for channel in info.get("channels", [])) or "none"
	status = "" if info.get("backend_ready", True) else " (backend not ready)"

	return f"{info.get('cps', 0.0):.2f} cps, cycle {info.get('cycle', 0)}, channels: {channels}{status}"


def main () -> None:

	parser = argparse.ArgumentParser(prog="tidepool-live", description="Send pattern code to a running tidepool engine.")
	parser.add_argument("--host", default=DEFAULT_HOST)
	parser.add_argument("--port", type=int, default=DEFAULT_PORT)
	args = parser.parse_args()

	client = LiveClient()

	try:
		client.connect(args.host, args.port)
	except OSError as exc:
		print(f"No engine listening on {args.host}:{args.port} ({exc}). Start one with engine.live().")
		sys.exit(1)

	try:
		print(f"tidepool @ {args.host}:{args.port}: {describe(client.info())}")
		print("Blank line sends, Ctrl+C drops the block, Ctrl+D quits.")

		while True:

			block = read_block()

			if block is None:
				continue

			print(client.send(block))

	except EOFError:
		print()

	except ConnectionError:
		print("Engine closed the connection.")

	finally:
		client.close()


if __name__ == "__main__":
	main()
