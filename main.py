# main.py

import asyncio
import base64
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Optional

import click

from core.config import ConfigManager, EngineConfig
from core.errors import IndexOutOfRange
from core.generation_orchestrator import GenerationOrchestrator, GenerationRequest
from core.llm_client import GeminiClient
from core.project_state_manager import ProjectStateManager
from core.state_models import (Attachment, GitHubCredentials, PlanName, SupabaseCredentials,
                               UsageAccount)
from core.usage_metering import UsageMeter
from services.account_store import InMemoryAccountStore
from services.integration_sync import GitHubSync, SupabaseSync
from services.learning_store import InMemoryLearningStore
from utils.logger import init_logging

logger = logging.getLogger("main")


def _load_project(project_file: Path, name: Optional[str]) -> ProjectStateManager:
    if project_file.exists():
        with open(project_file, "r", encoding="utf-8") as f:
            return ProjectStateManager.from_dict(json.load(f))
    return ProjectStateManager.create(name or project_file.stem)


def _save_project(state: ProjectStateManager, project_file: Path):
    project_file.parent.mkdir(parents=True, exist_ok=True)
    with open(project_file, "w", encoding="utf-8") as f:
        json.dump(state.to_dict(), f, indent=2)


def _load_accounts(accounts_file: Path, account_id: str) -> InMemoryAccountStore:
    """Accounts persist as ``{account_id: coins}``; unknown accounts start on the free plan."""
    balances = {}
    if accounts_file.exists():
        with open(accounts_file, "r", encoding="utf-8") as f:
            balances = json.load(f)
    if account_id not in balances:
        free_rate = UsageMeter().coin_rate_for(PlanName.FREE)
        balances[account_id] = free_rate.coins
    return InMemoryAccountStore(UsageAccount(account_id=a, coins=int(c)) for a, c in balances.items())


def _save_account(store: InMemoryAccountStore, accounts_file: Path, account_id: str):
    balances = {}
    if accounts_file.exists():
        with open(accounts_file, "r", encoding="utf-8") as f:
            balances = json.load(f)
    balances[account_id] = store.get(account_id).coins
    accounts_file.parent.mkdir(parents=True, exist_ok=True)
    with open(accounts_file, "w", encoding="utf-8") as f:
        json.dump(balances, f, indent=2)


def _read_attachment(path: Optional[Path]) -> Optional[Attachment]:
    if path is None:
        return None
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return Attachment(name=path.name, mime_type=mime_type, data_url=f"data:{mime_type};base64,{payload}")


async def _run_generation(config: EngineConfig, config_dir: Path, state: ProjectStateManager,
                          accounts: InMemoryAccountStore, request: GenerationRequest):
    learning_store = InMemoryLearningStore(config_dir / "learnings.json")
    orchestrator = GenerationOrchestrator.from_config(
        config,
        ai_collaborator=GeminiClient(config.ai),
        account_store=accounts,
        learning_store=learning_store,
        integration_syncs=[SupabaseSync(timeout=config.sync_timeout), GitHubSync(timeout=config.sync_timeout)],
    )
    result = await orchestrator.generate(state, request)
    await orchestrator.wait_for_pending_syncs()
    return result


@click.group()
@click.option("--config-dir", type=click.Path(path_type=Path), default=None,
              help="Directory holding config.json, accounts and learnings.")
@click.pass_context
def main(ctx, config_dir: Optional[Path]):
    """Generate and evolve static websites from natural-language prompts."""
    manager = ConfigManager(config_dir)
    config = manager.load()
    init_logging(config.log_level)
    ctx.obj = {"config": config, "config_dir": manager.config_dir}


@main.command()
@click.argument("project_file", type=click.Path(path_type=Path))
@click.argument("prompt")
@click.option("--name", default=None, help="Project name when creating a new project file.")
@click.option("--attach", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help="Image or file to send along with the prompt.")
@click.option("--account", "account_id", default="local", help="Usage account to charge.")
@click.pass_context
def generate(ctx, project_file: Path, prompt: str, name: Optional[str], attach: Optional[Path], account_id: str):
    """Generate or modify the site in PROJECT_FILE from PROMPT."""
    config: EngineConfig = ctx.obj["config"]
    config_dir: Path = ctx.obj["config_dir"]
    accounts_file = config_dir / "accounts.json"

    state = _load_project(project_file, name)
    accounts = _load_accounts(accounts_file, account_id)
    request = GenerationRequest(prompt=prompt, account_id=account_id, attachment=_read_attachment(attach))

    try:
        result = asyncio.run(_run_generation(config, config_dir, state, accounts, request))
    except ValueError as e:
        raise click.ClickException(str(e))

    _save_project(state, project_file)
    _save_account(accounts, accounts_file, account_id)

    if not result.success:
        click.echo(f"Error ({result.error_kind.value}): {result.error_message}", err=True)
        sys.exit(1)

    label = f" {result.rollback_label}" if result.rollback_label else ""
    click.echo(f"Updated {result.changed_file_count} files{label} in {result.duration:.1f}s.")
    if result.coins_charged:
        click.echo(f"Charged {result.coins_charged} coins. Balance: {accounts.get(account_id).coins}.")
    click.echo(state.project.chat_history[-1].content if state.project.chat_history else "")


@main.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("change", type=int)
def rollback(project_file: Path, change: int):
    """Restore PROJECT_FILE to the version before change number CHANGE."""
    state = _load_project(project_file, None)
    try:
        state.rollback(change - 1)
    except IndexOutOfRange as e:
        raise click.ClickException(e.message)
    _save_project(state, project_file)
    click.echo(state.project.chat_history[-1].content)


@main.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def history(project_file: Path):
    """List the snapshots recorded for PROJECT_FILE."""
    state = _load_project(project_file, None)
    lines = state.history_summary()
    if not lines:
        click.echo("No history yet.")
    for line in lines:
        click.echo(line)


@main.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
def preview(project_file: Path, output: Path):
    """Write the self-contained preview document of PROJECT_FILE to OUTPUT."""
    state = _load_project(project_file, None)
    output.write_text(state.project.preview_document, encoding="utf-8")
    click.echo(f"Preview written to {output}")


@main.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--out", "destination", type=click.Path(path_type=Path), default=Path("."),
              help="Directory (archive named after the project) or .zip path.")
def download(project_file: Path, destination: Path):
    """Package every file of PROJECT_FILE into a zip archive."""
    state = _load_project(project_file, None)
    try:
        archive = state.export_zip(destination)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Project \"{state.project.name}\" downloaded to {archive}")


@main.command()
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("new_name")
def rename(project_file: Path, new_name: str):
    """Rename the project stored in PROJECT_FILE."""
    state = _load_project(project_file, None)
    state.rename(new_name)
    _save_project(state, project_file)
    click.echo(f"Project renamed to \"{new_name}\".")


@main.group()
def connect():
    """Connect a project to an external service; later generations are pushed there."""
    pass


@connect.command("supabase")
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("url")
@click.argument("anon_key")
def connect_supabase(project_file: Path, url: str, anon_key: str):
    """Save the project row to the Supabase instance at URL."""
    state = _load_project(project_file, None)
    state.connect_integration(SupabaseCredentials(url=url, anon_key=anon_key))
    _save_project(state, project_file)
    click.echo(state.project.chat_history[-1].content)


@connect.command("github")
@click.argument("project_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("repo_url")
@click.option("--token", envvar="GITHUB_TOKEN", required=True, help="Personal access token (or GITHUB_TOKEN).")
@click.option("--branch", default="main", show_default=True)
def connect_github(project_file: Path, repo_url: str, token: str, branch: str):
    """Push project files to the GitHub repository at REPO_URL."""
    state = _load_project(project_file, None)
    state.connect_integration(GitHubCredentials(repo_url=repo_url, token=token, branch=branch))
    _save_project(state, project_file)
    click.echo(state.project.chat_history[-1].content)


@main.command()
@click.argument("content")
@click.pass_context
def learn(ctx, content: str):
    """Add a design learning that future generations take into account."""
    store = InMemoryLearningStore(ctx.obj["config_dir"] / "learnings.json")
    learning = asyncio.run(store.save_learning(content))
    click.echo(f"Saved learning {learning.id}.")


if __name__ == "__main__":
    main()
