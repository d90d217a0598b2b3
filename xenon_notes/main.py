"""Main application entry point for xenon-notes."""

import sys
import time
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.live import Live
from rich.table import Table

from .config import XenonNotesConfig
from .errors import XenonNotesError, MissingCredentialError
from .models.profile import LLMProvider, Profile
from .models.recording import Recording
from .services import ProcessingService, RecordingSessionController
from .storage import FileManager, ObjectStore, SecretStore

logger = logging.getLogger(__name__)

console = Console()


class App:
    """Wires configuration, storage and services together for the CLI."""

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        self.config = XenonNotesConfig(config_path)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))

        self.file_manager = FileManager(self.config.get_data_directory())
        self.store = ObjectStore(str(self.file_manager.store_path))
        self.secret_store = SecretStore(str(self.file_manager.secrets_path))

    def find_recording(self, ref: str) -> Recording:
        """Look a recording up by id or unique id prefix."""
        matches = self.store.query(Recording, lambda r: r.id.startswith(ref))
        if len(matches) != 1:
            raise XenonNotesError(f"No unique recording matches '{ref}'")
        return matches[0]

    def find_profile(self, name: str) -> Profile:
        matches = self.store.query(Profile, lambda p: p.name == name or p.id == name)
        if not matches:
            raise XenonNotesError(f"Profile not found: {name}")
        return matches[0]

    def record(self, duration: Optional[float], transcription: bool) -> None:
        controller = RecordingSessionController(
            self.config, self.store, self.file_manager, secret_store=self.secret_store)
        if transcription and self.config.get('transcription.enabled', True):
            try:
                controller.enable_transcription()
            except MissingCredentialError as e:
                console.print(f"Live transcription off: {e}", style="yellow")

        try:
            controller.start_recording()
            console.print("Recording... press Ctrl+C to stop", style="bold green")
            deadline = time.monotonic() + duration if duration else None
            with Live(render_status(controller), console=console, refresh_per_second=4) as live:
                while controller.is_recording:
                    if deadline is not None and time.monotonic() >= deadline:
                        break
                    time.sleep(0.25)
                    live.update(render_status(controller))
        except KeyboardInterrupt:
            pass
        finally:
            recording = controller.stop_recording()
            controller.close()

        if controller.last_error is not None:
            console.print(f"Recording ended by error: {controller.last_error}", style="bold red")
        if recording is not None:
            console.print(f"Saved recording {recording.id} ({recording.duration:.1f}s, "
                          f"{len(recording.chunks)} chunk(s))", style="bold green")
            if recording.transcript is not None:
                console.print(recording.transcript.raw_text)


def render_status(controller: RecordingSessionController) -> Table:
    table = Table(title="Recording", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Elapsed", f"{controller.recording_time:.1f}s")
    chunk = controller.current_recording.current_chunk if controller.current_recording else None
    table.add_row("Chunk", str(chunk.index) if chunk else "-")
    table.add_row("Level", "#" * int(min(controller.audio_level * 200, 40)))
    client = controller.transcription_client
    table.add_row("Transcription", client.state.value if client and controller.transcription_enabled else "off")
    table.add_row("Transcript", controller.current_transcript or "")
    if controller.dropped_buffers:
        table.add_row("Dropped buffers", str(controller.dropped_buffers))
    return table


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/xenon_notes.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("xenon-notes starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def cmd_record(app: App, args) -> None:
    app.record(args.duration, transcription=not args.no_transcription)


def cmd_recordings(app: App, args) -> None:
    recordings = app.store.query(Recording, sort_key=lambda r: r.created_at, reverse=True)
    table = Table(title="Recordings", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Duration", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Transcript")
    for recording in recordings:
        preview = recording.transcript.raw_text[:50] if recording.transcript else ""
        table.add_row(recording.id[:8], recording.title, f"{recording.duration:.1f}s",
                      str(len(recording.chunks)), preview)
    console.print(table)


def cmd_show(app: App, args) -> None:
    recording = app.find_recording(args.recording_id)
    console.print(f"[bold]{recording.title}[/bold] ({recording.id})")
    for chunk in recording.chunks:
        console.print(f"  chunk {chunk.index}: {chunk.start_time:.1f}s +{chunk.duration:.1f}s "
                      f"[{chunk.status.value}] {chunk.file_ref or '-'}")
    if recording.transcript is not None:
        console.print("\n[bold]Transcript[/bold]")
        console.print(recording.transcript.raw_text)
    for result in app.store.processed_results_for(recording):
        console.print(f"\n[bold]Processed with {result.model_used}[/bold] ({result.processing_time:.1f}s)")
        console.print(result.processed_text)


def cmd_delete(app: App, args) -> None:
    recording = app.find_recording(args.recording_id)
    app.store.delete(recording)
    app.store.save()
    app.file_manager.delete_recording_audio(recording.id)
    console.print(f"Deleted recording {recording.id}")


def cmd_process(app: App, args) -> None:
    recording = app.find_recording(args.recording_id)
    profile = app.find_profile(args.profile)
    service = ProcessingService(app.store, app.secret_store)
    result = asyncio.run(service.process_recording(recording, profile))
    console.print(result.processed_text)


def cmd_profile_add(app: App, args) -> None:
    provider = LLMProvider.parse(args.provider)
    models = provider.available_models
    if args.model and models and args.model not in models:
        raise ValueError(f"Unknown {provider.value} model '{args.model}'. Available: {', '.join(models)}")
    profile = Profile(
        name=args.name,
        provider=provider,
        model_name=args.model,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        custom_endpoint=args.endpoint,
    )
    if args.system_prompt:
        profile.system_prompt = args.system_prompt
    app.store.insert(profile)
    app.store.save()
    console.print(f"Added profile '{profile.name}' ({provider.value}, {profile.model_name})")


def cmd_profile_list(app: App, args) -> None:
    table = Table(title="Profiles", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Temperature", justify="right")
    table.add_column("Active")
    for profile in app.store.query(Profile, sort_key=lambda p: p.name):
        table.add_row(profile.name, profile.provider.value, profile.model_name,
                      f"{profile.temperature:.2f}", "yes" if profile.is_active else "no")
    console.print(table)


def cmd_profile_delete(app: App, args) -> None:
    profile = app.find_profile(args.name)
    app.store.delete(profile)
    app.store.save()
    console.print(f"Deleted profile '{profile.name}'")


def _key_scope(app: App, args) -> Optional[str]:
    return app.find_profile(args.profile).api_key_identifier if args.profile else None


def cmd_keys_set(app: App, args) -> None:
    app.secret_store.set(args.service, args.key, profile_id=_key_scope(app, args))
    console.print(f"Stored key for {args.service}")


def cmd_keys_delete(app: App, args) -> None:
    app.secret_store.delete(args.service, profile_id=_key_scope(app, args))
    console.print(f"Removed key for {args.service}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xenon-notes",
        description="xenon-notes - voice notes with live transcription and LLM post-processing",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in defaults)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config)"
    )
    parser.add_argument("--version", action="version", version="xenon-notes v0.1.0")

    commands = parser.add_subparsers(dest="command", required=True)

    record = commands.add_parser("record", help="Record a new voice note")
    record.add_argument("--duration", type=float, help="Stop after this many seconds")
    record.add_argument("--no-transcription", action="store_true", help="Record without live transcription")
    record.set_defaults(func=cmd_record)

    commands.add_parser("recordings", help="List recordings").set_defaults(func=cmd_recordings)

    show = commands.add_parser("show", help="Show a recording with its transcript")
    show.add_argument("recording_id")
    show.set_defaults(func=cmd_show)

    delete = commands.add_parser("delete", help="Delete a recording and its audio")
    delete.add_argument("recording_id")
    delete.set_defaults(func=cmd_delete)

    process = commands.add_parser("process", help="Process a transcript with a profile")
    process.add_argument("recording_id")
    process.add_argument("profile", help="Profile name")
    process.set_defaults(func=cmd_process)

    profile = commands.add_parser("profile", help="Manage processing profiles")
    profile_commands = profile.add_subparsers(dest="profile_command", required=True)
    add = profile_commands.add_parser("add", help="Add a profile")
    add.add_argument("name")
    add.add_argument("--provider", default=LLMProvider.OPENAI.key_service,
                     help="openai, anthropic, gemini or custom")
    add.add_argument("--model", help="Model name (default: provider default)")
    add.add_argument("--system-prompt")
    add.add_argument("--temperature", type=float, default=0.7)
    add.add_argument("--max-tokens", type=int)
    add.add_argument("--endpoint", help="Chat completions URL for custom providers")
    add.set_defaults(func=cmd_profile_add)
    profile_commands.add_parser("list", help="List profiles").set_defaults(func=cmd_profile_list)
    remove = profile_commands.add_parser("delete", help="Delete a profile")
    remove.add_argument("name")
    remove.set_defaults(func=cmd_profile_delete)

    keys = commands.add_parser("keys", help="Manage API keys")
    key_commands = keys.add_subparsers(dest="keys_command", required=True)
    key_set = key_commands.add_parser("set", help="Store an API key")
    key_set.add_argument("service", help="deepgram, openai, anthropic, gemini or custom")
    key_set.add_argument("key")
    key_set.add_argument("--profile", help="Scope the key to one profile")
    key_set.set_defaults(func=cmd_keys_set)
    key_delete = key_commands.add_parser("delete", help="Remove an API key")
    key_delete.add_argument("service")
    key_delete.add_argument("--profile")
    key_delete.set_defaults(func=cmd_keys_delete)

    return parser


def main(argv=None) -> None:
    """Main entry point for the xenon-notes CLI."""
    args = build_parser().parse_args(argv)
    try:
        app = App(args.config, args.log_level)
        args.func(app, args)
    except (XenonNotesError, ValueError, FileNotFoundError) as e:
        console.print(f"Error: {e}", style="bold red")
        logger.error(f"Command '{args.command}' failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
