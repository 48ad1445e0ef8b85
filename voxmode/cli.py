"""Typer CLI entry point for VoxMode."""

from __future__ import annotations

import json
import sys
import threading
from pathlib import Path
from typing import List, Optional

import typer

from .config import (
    EnvironmentSettingError,
    clear_environment_setting,
    get_settings,
    list_environment_settings,
    update_environment_setting,
)
from .core.audio.base import CaptureError
from .core.audio.factory import CaptureRequest
from .core.pipeline.controller import RecordingSessionController
from .core.power_mode.resolver import ConfigurationResolver
from .data.models import ContextObservation, SessionResult, SessionState
from .data.rules import InMemoryRuleStore, JsonRuleStore
from .errors import ConfigurationError, ControlError
from .logging import configure_logging, get_logger
from .services.enhancement.pipeline import ENHANCEMENT_PROVIDERS
from .services.enhancement.prompts import PromptLibrary
from .services.transcription.dispatcher import TRANSCRIPTION_BACKENDS

app = typer.Typer(help="VoxMode dictation engine")
config_app = typer.Typer(help="Inspect and change VOXMODE_ settings")
app.add_typer(config_app, name="config")
LOGGER = get_logger(__name__)


def _load_store(rules: Optional[Path]):
    path = rules or get_settings().rules_path
    try:
        if Path(path).exists():
            return JsonRuleStore(path)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return InMemoryRuleStore()


def _build_resolver(
    rules: Optional[Path],
    app_name: Optional[str],
    url: Optional[str],
    backend: Optional[str] = None,
    model: Optional[str] = None,
    prompt: Optional[str] = None,
) -> ConfigurationResolver:
    store = _load_store(rules)
    overrides = {
        key: value for key, value in (("backend", backend), ("model", model), ("prompt", prompt)) if value
    }
    if overrides:
        store.set_default(store.default_configuration().model_copy(update=overrides))
    resolver = ConfigurationResolver(store)
    if app_name:
        resolver.update(ContextObservation(application=app_name, url=url))
    return resolver


def _echo_result(result: SessionResult) -> None:
    typer.echo(f"Session {result.session_id}: {result.outcome.value} ({result.duration:.1f}s of audio)")
    if result.error is not None:
        typer.echo(f"Error [{result.error.category}]: {result.error.message}", err=True)
    if result.enhancement_error is not None:
        typer.echo(f"Enhancement skipped: {result.enhancement_error.message}", err=True)
    if result.final_text:
        typer.echo(result.final_text)


def _run_session(controller: RecordingSessionController, wait_for_enter: bool) -> SessionResult:
    results: List[SessionResult] = []
    controller.add_listener(results.append)
    try:
        controller.start()
    except CaptureError as exc:
        typer.echo(f"Capture failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    pressed = threading.Event()
    if wait_for_enter:
        typer.echo("Recording... press Enter to stop (Ctrl+C to cancel).")
        threading.Thread(target=lambda: (sys.stdin.readline(), pressed.set()), daemon=True).start()

    try:
        while controller.state is SessionState.RECORDING:
            if pressed.wait(0.1):
                try:
                    controller.stop()
                except ControlError:
                    LOGGER.debug("Session already stopped")
                break
        controller.wait_idle()
    except KeyboardInterrupt:
        typer.echo("Cancelled.")
        try:
            controller.cancel()
        except ControlError:
            LOGGER.debug("Nothing to cancel")
        raise typer.Exit(code=130)
    finally:
        controller.close()

    if not results:
        typer.echo("No result was produced.", err=True)
        raise typer.Exit(code=1)
    return results[-1]


@app.command()
def devices() -> None:
    """List available audio input devices."""

    configure_logging()
    from .core.audio.sounddevice_backend import list_input_devices

    try:
        entries = list_input_devices()
    except CaptureError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    if not entries:
        typer.echo("No input devices found.")
        return
    for entry in entries:
        typer.echo(
            f"{entry['index']:>3}  {entry['name']}  "
            f"({entry['channels']} ch, {entry['default_samplerate'] or '?'} Hz)"
        )


@app.command()
def record(
    app_name: Optional[str] = typer.Option(None, "--app", help="Focused application used for Power Mode"),
    url: Optional[str] = typer.Option(None, help="Focused URL used for Power Mode"),
    device: Optional[str] = typer.Option(None, help="Input device id/name"),
    backend: Optional[str] = typer.Option(None, help="Override the default transcription backend"),
    model: Optional[str] = typer.Option(None, help="Override the default transcription model"),
    prompt: Optional[str] = typer.Option(None, help="Enhancement prompt id for the default configuration"),
    auto_stop: Optional[bool] = typer.Option(None, "--auto-stop/--no-auto-stop", help="Stop when speech ends"),
    rules: Optional[Path] = typer.Option(None, help="Power Mode rules file"),
) -> None:
    """Record from the microphone and print the transcript."""

    configure_logging()
    resolver = _build_resolver(rules, app_name, url, backend, model, prompt)
    controller = RecordingSessionController(
        resolver,
        capture_request=CaptureRequest(device=device),
        auto_stop=auto_stop,
    )
    result = _run_session(controller, wait_for_enter=True)
    _echo_result(result)
    if result.state is SessionState.ERROR:
        raise typer.Exit(code=1)


@app.command("transcribe-file")
def transcribe_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="WAV file to transcribe"),
    app_name: Optional[str] = typer.Option(None, "--app", help="Focused application used for Power Mode"),
    url: Optional[str] = typer.Option(None, help="Focused URL used for Power Mode"),
    backend: Optional[str] = typer.Option(None, help="Override the default transcription backend"),
    model: Optional[str] = typer.Option(None, help="Override the default transcription model"),
    prompt: Optional[str] = typer.Option(None, help="Enhancement prompt id for the default configuration"),
    realtime: bool = typer.Option(False, "--realtime/--fast", help="Replay the file at its natural pace"),
    rules: Optional[Path] = typer.Option(None, help="Power Mode rules file"),
) -> None:
    """Run a WAV file through the same session pipeline as a live recording."""

    configure_logging()
    resolver = _build_resolver(rules, app_name, url, backend, model, prompt)
    controller = RecordingSessionController(
        resolver,
        capture_request=CaptureRequest(backend="wavefile", source_path=path, realtime=realtime),
        auto_stop=False,
    )
    result = _run_session(controller, wait_for_enter=False)
    _echo_result(result)
    if result.state is SessionState.ERROR:
        raise typer.Exit(code=1)


@app.command()
def resolve(
    app_name: str = typer.Argument(..., help="Application name or bundle id"),
    url: Optional[str] = typer.Option(None, help="Focused URL"),
    rules: Optional[Path] = typer.Option(None, help="Power Mode rules file"),
) -> None:
    """Show the configuration Power Mode selects for an application/URL."""

    configure_logging()
    store = _load_store(rules)
    resolver = ConfigurationResolver(store)
    try:
        configuration = resolver.resolve(ContextObservation(application=app_name, url=url))
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(configuration.model_dump(mode="json", exclude_none=True), indent=2))


@app.command("rules")
def list_rules(rules: Optional[Path] = typer.Option(None, help="Power Mode rules file")) -> None:
    """List Power Mode rules."""

    configure_logging()
    store = _load_store(rules)
    entries = store.rules()
    if not entries:
        typer.echo("No Power Mode rules configured.")
        return
    for rule in sorted(entries, key=lambda item: (-item.priority, item.id)):
        flag = "" if rule.enabled else " (disabled)"
        typer.echo(
            f"{rule.id}{flag}: app={rule.application or '*'} url={rule.url or '*'} "
            f"priority={rule.priority} -> {rule.configuration.backend}/{rule.configuration.model or '-'}"
            + (f" prompt={rule.configuration.prompt}" if rule.configuration.prompt else "")
        )


@app.command()
def backends() -> None:
    """List transcription backends, enhancement providers and prompts."""

    typer.echo("Transcription backends: " + ", ".join(sorted(TRANSCRIPTION_BACKENDS)))
    typer.echo("Enhancement providers: " + ", ".join(sorted(ENHANCEMENT_PROVIDERS)))
    typer.echo("Prompts: " + ", ".join(PromptLibrary().ids()))


@config_app.command("show")
def config_show() -> None:
    """Print every setting with its environment variable."""

    for setting in list_environment_settings():
        value = setting.value
        if value is not None and "api_key" in setting.field:
            value = "***"
        typer.echo(f"{setting.env_name}={'' if value is None else value}")


@config_app.command("set")
def config_set(field: str = typer.Argument(...), value: str = typer.Argument(...)) -> None:
    """Persist a setting override to .env."""

    try:
        update_environment_setting(field, value)
    except EnvironmentSettingError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Updated {field}")


@config_app.command("unset")
def config_unset(field: str = typer.Argument(...)) -> None:
    """Remove a setting override from .env."""

    try:
        clear_environment_setting(field)
    except EnvironmentSettingError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Cleared {field}")


if __name__ == "__main__":  # pragma: no cover
    app()
