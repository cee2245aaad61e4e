"""CLI entry point for manga-flow."""

import asyncio
import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Awaitable, Callable, Iterator, List, Optional, TypeVar

import typer

from . import __version__
from .config import SCENE_COUNT_MAX, SCENE_COUNT_MIN, config
from .exceptions import ConfigurationError, MangaFlowError
from .export import ExportFormat
from .models import ProjectCheckpoint, RefinementStage
from .store import CheckpointStore, create_checkpoint_store
from .streaming import CancellationToken
from .workflow import current_step

T = TypeVar("T")

app = typer.Typer(
    name="manga-flow",
    help="AI-assisted manga storyboard workflow",
    no_args_is_help=True
)

_STATUS_ICONS = {
    "pending": "⏳",
    "completed": "✅",
    "error": "❌",
    "needs_update": "⚠️ ",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"manga-flow version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging"
    ),
) -> None:
    """manga-flow - Turn a story idea into storyboard prompts."""
    setup_logging(verbose)


@contextmanager
def _open_store() -> Iterator[CheckpointStore]:
    try:
        config.validate_store()
        store = create_checkpoint_store()
    except MangaFlowError as e:
        typer.echo(f"❌ {e.message}")
        raise typer.Exit(1)
    try:
        yield store
    finally:
        store.close()


def _generator():
    from .services.generation import LLMGenerationService

    try:
        config.validate_required()
        return LLMGenerationService()
    except ConfigurationError as e:
        typer.echo(f"❌ Configuration error: {e.message}")
        raise typer.Exit(1)


async def _closing(generator, call: Awaitable[T]) -> T:
    """Await *call*, then close *generator* on the same event loop."""
    try:
        return await call
    finally:
        await generator.aclose()


def _cancel_on_interrupt(token: CancellationToken) -> Callable[[], None]:
    """Make Ctrl-C cancel *token*. Returns a function that undoes it."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        # No handlers on this loop or thread; Ctrl-C cancels the task instead
        return lambda: None
    return lambda: loop.remove_signal_handler(signal.SIGINT)


def _fail(error: Optional[str]) -> None:
    typer.echo(f"❌ {error or 'Unknown error'}")
    raise typer.Exit(1)


def _print_project(project: ProjectCheckpoint) -> None:
    typer.echo(f"📁 {project.title or '(untitled)'}  [{project.project_id}]")
    typer.echo(f"   State: {project.workflow_state.value} (step: {current_step(project.workflow_state).value})")
    if project.summary:
        typer.echo(f"   Story: {project.summary}")
    if project.art_style:
        typer.echo(f"   Style: {project.art_style}")
    if project.protagonist:
        typer.echo(f"   Protagonist: {project.protagonist}")
    if project.updated_at:
        typer.echo(f"   Updated: {project.updated_at}")


def _print_scenes(project: ProjectCheckpoint, detail: bool = False) -> None:
    if not project.scenes:
        typer.echo("\n   No scenes yet")
        return
    typer.echo(f"\n🎞️  Scenes ({len(project.completed_scenes())}/{len(project.scenes)} completed):")
    for scene in project.sorted_scenes():
        icon = _STATUS_ICONS.get(scene.status.value, "🔄")
        typer.echo(f"   {icon} {scene.order}. {scene.summary}  [{scene.id}, {scene.status.value}]")
        if scene.error:
            typer.echo(f"      error: {scene.error}")
        if detail:
            for label, value in (
                ("scene", scene.scene_description),
                ("action", scene.action_description),
                ("prompt", scene.shot_prompt),
            ):
                if value:
                    preview = value[:70] + "..." if len(value) > 70 else value
                    typer.echo(f"      {label}: {preview}")


@app.command()
def new(
    title: str = typer.Argument(..., help="Project title"),
    summary: str = typer.Option("", "--summary", help="Story synopsis"),
    style: str = typer.Option("", "--style", help="Art style, e.g. 'black and white shonen manga'"),
    protagonist: str = typer.Option("", "--protagonist", help="Protagonist description"),
) -> None:
    """Create a new project."""
    from .services.projects import ProjectService

    with _open_store() as store:
        try:
            project = ProjectService(store).create_project(title, summary, style, protagonist)
        except MangaFlowError as e:
            _fail(e.message)
    typer.echo("✅ Project created")
    _print_project(project)


@app.command("list")
def list_projects() -> None:
    """List projects, most recently updated first."""
    with _open_store() as store:
        projects = store.list()
    if not projects:
        typer.echo("No projects yet. Run 'manga-flow new TITLE' to start one.")
        return
    for project in projects:
        typer.echo(
            f"📁 {project.project_id}  {project.title or '(untitled)'}  "
            f"{project.workflow_state.value}  {len(project.completed_scenes())}/{len(project.scenes)} scenes"
        )


@app.command()
def show(
    project_id: str = typer.Argument(..., help="Project id"),
) -> None:
    """Show a project and its scenes."""
    with _open_store() as store:
        project = store.load(project_id)
    if project is None:
        _fail(f"Project not found: '{project_id}'")
    _print_project(project)
    _print_scenes(project, detail=True)


@app.command()
def info(
    project_id: str = typer.Argument(..., help="Project id"),
    title: Optional[str] = typer.Option(None, "--title", help="Project title"),
    summary: Optional[str] = typer.Option(None, "--summary", help="Story synopsis"),
    style: Optional[str] = typer.Option(None, "--style", help="Art style"),
    protagonist: Optional[str] = typer.Option(None, "--protagonist", help="Protagonist description"),
) -> None:
    """Update a project's basic settings."""
    from .services.projects import ProjectService

    with _open_store() as store:
        try:
            project = ProjectService(store).update_project(
                project_id, title=title, summary=summary, art_style=style, protagonist=protagonist
            )
        except MangaFlowError as e:
            _fail(e.message)
    typer.echo("✅ Project updated")
    _print_project(project)


@app.command("generate-scenes")
def generate_scenes(
    project_id: str = typer.Argument(..., help="Project id"),
    count: Optional[int] = typer.Option(
        None,
        "--count",
        "-n",
        help="Number of scenes",
        min=SCENE_COUNT_MIN,
        max=SCENE_COUNT_MAX
    ),
) -> None:
    """Generate the scene list for a project."""
    from .pipeline import ScenePipeline

    with _open_store() as store:
        generator = _generator()
        pipeline = ScenePipeline(store, generator)
        typer.echo("🎬 Generating scenes...")
        result = asyncio.run(_closing(generator, pipeline.generate_scene_list(project_id, count)))
    if not result.success:
        _fail(result.error)
    typer.echo(f"✅ Generated {len(result.project.scenes)} scenes")
    _print_scenes(result.project)


@app.command("add-scene")
def add_scene(
    project_id: str = typer.Argument(..., help="Project id"),
    summary: str = typer.Argument(..., help="Scene summary"),
    position: Optional[int] = typer.Option(None, "--position", "-p", help="1-based position", min=1),
) -> None:
    """Add a scene by hand."""
    from .services.projects import ProjectService

    with _open_store() as store:
        try:
            scene = ProjectService(store).add_scene(project_id, summary, position=position)
        except MangaFlowError as e:
            _fail(e.message)
    typer.echo(f"✅ Added scene {scene.order} [{scene.id}]")


@app.command()
def reorder(
    project_id: str = typer.Argument(..., help="Project id"),
    scene_ids: List[str] = typer.Argument(..., help="Every scene id, in the new order"),
) -> None:
    """Reorder the scenes of a project."""
    from .services.projects import ProjectService

    with _open_store() as store:
        service = ProjectService(store)
        try:
            service.reorder_scenes(project_id, scene_ids)
            project = service.get_project(project_id)
        except MangaFlowError as e:
            _fail(e.message)
    typer.echo("✅ Scenes reordered")
    _print_scenes(project)


@app.command()
def confirm(
    project_id: str = typer.Argument(..., help="Project id"),
) -> None:
    """Confirm the scene list."""
    from .services.projects import ProjectService

    with _open_store() as store:
        try:
            project = ProjectService(store).confirm_scene_list(project_id)
        except MangaFlowError as e:
            _fail(e.message)
    typer.echo(f"✅ Scene list confirmed ({len(project.scenes)} scenes)")


async def _stream_stages(pipeline, project_id: str, scene_ids: List[str], stage: RefinementStage) -> None:
    token = CancellationToken()
    undo = _cancel_on_interrupt(token)
    try:
        for scene_id in scene_ids:
            typer.echo(f"🎨 {stage.value} for {scene_id}")
            result = await pipeline.run_stage(
                project_id, scene_id, stage,
                on_chunk=lambda chunk, _buffer: typer.echo(chunk, nl=False),
                cancel_token=token,
            )
            typer.echo("")
            if result.cancelled:
                typer.echo("⏹️  Cancelled, scene restored")
                raise typer.Exit(130)
            if not result.success:
                _fail(result.error)
    finally:
        undo()


@app.command()
def refine(
    project_id: str = typer.Argument(..., help="Project id"),
    scene_ids: Optional[List[str]] = typer.Argument(None, help="Scenes to refine (default: all unfinished)"),
    stage: Optional[RefinementStage] = typer.Option(
        None,
        "--stage",
        "-s",
        help="Run only this stage, streaming its output"
    ),
) -> None:
    """Refine scenes into descriptions and image prompts."""
    from .pipeline import ScenePipeline

    with _open_store() as store:
        project = store.load(project_id)
        if project is None:
            _fail(f"Project not found: '{project_id}'")
        targets = scene_ids or [scene.id for scene in project.sorted_scenes() if not scene.is_completed]
        if not targets:
            typer.echo("Nothing to refine: every scene is completed")
            return

        generator = _generator()
        pipeline = ScenePipeline(store, generator)

        if stage is not None:
            asyncio.run(_closing(generator, _stream_stages(pipeline, project_id, targets, stage)))
            return

        if len(targets) == 1:
            typer.echo(f"🎨 Refining scene {targets[0]}...")
            result = asyncio.run(_closing(generator, pipeline.refine_scene(project_id, targets[0])))
            if not result.success:
                _fail(result.error)
            typer.echo(f"✅ Scene {result.scene.order} completed")
            typer.echo(f"   → {result.scene.shot_prompt}")
            return

        typer.echo(f"🎨 Refining {len(targets)} scenes...")
        result = asyncio.run(_closing(generator, pipeline.batch_refine(project_id, targets)))
    if not result.success:
        _fail(result.error)
    for item in result.items:
        if item.success:
            typer.echo(f"   ✅ {item.scene_id}")
        else:
            typer.echo(f"   ❌ {item.scene_id}: {item.error}")
    for scene_id in result.missing:
        typer.echo(f"   ⚠️  {scene_id}: not found")
    typer.echo(f"\n📋 Project state: {result.project.workflow_state.value}")


@app.command()
def export(
    project_id: str = typer.Argument(..., help="Project id"),
    output_format: ExportFormat = typer.Option(
        ExportFormat.MARKDOWN,
        "--format",
        "-f",
        help="Export format"
    ),
    metadata: bool = typer.Option(False, "--metadata", help="Include project metadata"),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write to this file instead of stdout"
    ),
) -> None:
    """Export the prompts of all completed scenes."""
    from .services.projects import ProjectService

    with _open_store() as store:
        try:
            content, project = ProjectService(store).export_project(project_id, output_format, metadata)
        except MangaFlowError as e:
            _fail(e.message)

    if output is None:
        typer.echo(content)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    typer.echo(f"✅ Exported {len(project.completed_scenes())} scenes to {output}")


@app.command()
def delete(
    project_id: str = typer.Argument(..., help="Project id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a project and its scenes."""
    from .services.projects import ProjectService

    if not yes:
        typer.confirm(f"Delete project {project_id}?", abort=True)
    with _open_store() as store:
        try:
            ProjectService(store).delete_project(project_id)
        except MangaFlowError as e:
            _fail(e.message)
    typer.echo(f"🗑️  Deleted {project_id}")


@app.command()
def chat(
    project_id: Optional[str] = typer.Option(None, "--project", "-p", help="Continue this project"),
    thread_id: Optional[str] = typer.Option(None, "--thread", "-t", help="Continue this conversation thread"),
) -> None:
    """Talk to the storyboard assistant. Type 'exit' to quit."""
    from .agents.project_agent import ProjectAgent
    from .services.anthropic import AnthropicClient
    from .tools import ToolScope, create_agent_tools

    with _open_store() as store:
        try:
            client = AnthropicClient()
        except ConfigurationError as e:
            _fail(e.message)
        generator = _generator()
        tools = create_agent_tools(store, generator, ToolScope(thread_id=thread_id, project_id=project_id))
        agent = ProjectAgent(tools, client=client)

        async def conversation() -> None:
            typer.echo("💬 Describe your story. Type 'exit' to quit.")
            try:
                while True:
                    message = typer.prompt("you").strip()
                    if message.lower() in ("exit", "quit"):
                        break
                    try:
                        reply = await agent.chat(message)
                    except Exception as e:
                        typer.echo(f"❌ {e}")
                        continue
                    typer.echo(f"assistant: {reply}")
            finally:
                await client.aclose()

        asyncio.run(_closing(generator, conversation()))
    if agent.project_id:
        typer.echo(f"\n📁 Project: {agent.project_id}")


if __name__ == "__main__":
    app()
