"""Click-based CLI that hosts the sidecar and chats with it."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass

import click

from client.config import ClientConfig, load_client_config
from sidechat.chat import ChatEvent, ChatEventKind, MessageRole, StreamingChatSession
from sidechat.errors import SidecarStartError
from sidechat.sidecar import LogChunk, LogStream, SidecarSupervisor, probe_health


@dataclass
class CLIState:
    """Owns the single sidecar instance for the lifetime of one invocation."""

    settings: ClientConfig
    server_url: str | None = None
    supervisor: SidecarSupervisor | None = None
    show_sidecar_output: bool = False

    def ensure_server(self) -> str:
        """Return a reachable base URL, (re)starting the sidecar when needed."""

        if self.server_url is not None:
            return self.server_url
        if self.supervisor is None:
            observers = [_echo_chunk] if self.show_sidecar_output else []
            self.supervisor = SidecarSupervisor(
                self.settings.sidecar_config(),
                log_path=self.settings.log_file,
                observers=observers,
            )
        if not self.supervisor.is_running():
            try:
                self.supervisor.start()
            except SidecarStartError as exc:
                raise click.ClickException(str(exc)) from exc
        return self.supervisor.server_url()

    def open_session(self) -> StreamingChatSession:
        return StreamingChatSession(
            self.ensure_server(),
            username=self.settings.username,
            timeout=self.settings.chat_timeout,
        )

    def close(self) -> None:
        if self.supervisor is not None:
            self.supervisor.close()
            self.supervisor = None


def _echo_chunk(chunk: LogChunk) -> None:
    click.echo(chunk.text, nl=False, err=True)


def _print_event(event: ChatEvent) -> None:
    if event.message.role is not MessageRole.ASSISTANT:
        return
    if event.kind is ChatEventKind.DELTA:
        click.echo(event.delta, nl=False)
    elif event.kind is ChatEventKind.FINALIZED:
        click.echo()


def _run_turn(session: StreamingChatSession, text: str) -> None:
    session.send(text, _print_event)


@click.group()
@click.option("--binary", help="Path to the sidecar executable.")
@click.option("--port", type=click.IntRange(1, 65535), help="Loopback port for the sidecar.")
@click.option("--upstream-url", help="Upstream service URL handed to the sidecar.")
@click.option("--token", help="Access token handed to the sidecar.")
@click.option("--username", help="Username sent with each chat message.")
@click.option(
    "--server-url",
    help="Chat with an already-running backend instead of spawning one.",
)
@click.option(
    "--sidecar-output/--no-sidecar-output",
    default=False,
    show_default=True,
    help="Echo sidecar stdout/stderr to the terminal.",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity.")
@click.pass_context
def app(
    ctx: click.Context,
    binary: str | None,
    port: int | None,
    upstream_url: str | None,
    token: str | None,
    username: str | None,
    server_url: str | None,
    sidecar_output: bool,
    verbose: int,
) -> None:
    """Launch a local chat backend and talk to it."""

    level = logging.WARNING - 10 * min(verbose, 2)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    config = load_client_config().merged(
        binary=binary,
        port=port,
        upstream_url=upstream_url,
        access_token=token,
        username=username,
    )
    state = CLIState(
        settings=config,
        server_url=server_url.rstrip("/") if server_url else None,
        show_sidecar_output=sidecar_output,
    )
    ctx.obj = state
    ctx.call_on_close(state.close)


@app.command()
@click.pass_obj
def chat(state: CLIState) -> None:
    """Interactive chat; an empty line or EOF ends the conversation."""

    session = state.open_session()
    click.echo(f"Connected to {session.server_url}. Empty line to quit.", err=True)
    while True:
        try:
            text = click.prompt("you", default="", show_default=False, prompt_suffix="> ")
        except (EOFError, click.Abort):
            break
        if not text.strip():
            break
        if state.supervisor is not None and not state.supervisor.is_running():
            click.echo("Sidecar stopped; restarting.", err=True)
            session = StreamingChatSession(
                state.ensure_server(),
                username=state.settings.username,
                timeout=state.settings.chat_timeout,
                state=session.state,
            )
        _run_turn(session, text)


@app.command()
@click.argument("message")
@click.pass_obj
def ask(state: CLIState, message: str) -> None:
    """Send a single MESSAGE and print the streamed reply."""

    if not message.strip():
        raise click.BadParameter("Message must not be empty.", param_hint="MESSAGE")
    session = state.open_session()
    _run_turn(session, message)


@app.command()
@click.option("--timeout", type=float, default=1.0, show_default=True, help="Probe timeout.")
@click.pass_obj
def health(state: CLIState, timeout: float) -> None:
    """Probe the health endpoint of a backend without spawning one."""

    url = state.server_url or f"http://127.0.0.1:{state.settings.port}"
    if probe_health(url, timeout=timeout):
        click.echo(f"{url} is healthy.")
        return
    click.echo(f"{url} is not responding.", err=True)
    sys.exit(1)


@app.command()
@click.pass_obj
def logs(state: CLIState) -> None:
    """Print the sidecar output captured in the configured log file."""

    if state.settings.log_file is None:
        raise click.ClickException("No log_file is configured under [sidecar].")
    for chunk in LogStream(state.settings.log_file).replay():
        click.echo(chunk.text, nl=False)


@app.command()
@click.option("--token-delay", type=float, default=0.0, show_default=True)
@click.pass_obj
def stub(state: CLIState, token_delay: float) -> None:
    """Serve the echo stub backend on the configured port."""

    import uvicorn

    from sidechat.stub import StubSettings, create_app

    uvicorn.run(
        create_app(StubSettings(token_delay=token_delay)),
        host="127.0.0.1",
        port=state.settings.port,
    )


def main() -> None:
    """Entry point for console_scripts."""

    app(standalone_mode=True)
