"""Typer-powered command line interface for ``localstacker``.

Every command builds its collaborators from the layered configuration,
runs inside a structured operation scope and converts
:class:`~localstacker.errors.LocalstackerError` failures into a single red
line on stderr plus the matching exit code.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config
from .errors import LocalstackerError
from .fileops import FileOps
from .locking import LockManager
from .logging import OperationScope, StructuredLogger
from .models import DomainRecord
from .orchestrator import ProvisionRequest, Provisioner, is_root
from .process import CommandRunner
from .providers import MkcertProvider, NginxProvider, SystemdProvider
from .state import StateRegistry
from .status import DomainStatus, StatusEvaluator
from .templates import TemplateEngine

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to localstacker's YAML config file.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision local HTTPS endpoints backed by mkcert and nginx.

        Each domain gets a locally-trusted certificate, an nginx virtual host
        proxying to a backend port on 127.0.0.1 and an entry in the domain
        registry so it can be listed, inspected and removed later.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    locks: LockManager
    logger: StructuredLogger
    runner: CommandRunner
    files: FileOps
    templates: TemplateEngine
    mkcert: MkcertProvider
    nginx: NginxProvider
    systemd: SystemdProvider


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    *,
    dry_run: bool = False,
    verbose: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if dry_run:
        overrides["dry_run"] = True
    if verbose:
        overrides["verbose"] = True

    config = load_config(config_file=config_file, overrides=overrides)
    runner = CommandRunner(dry_run=config.dry_run, verbose=config.verbose, console=err_console)
    files = FileOps(dry_run=config.dry_run, verbose=config.verbose, console=err_console)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    runtime = RuntimeContext(
        config=config,
        registry=StateRegistry(config.registry_dir),
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        runner=runner,
        files=files,
        templates=templates,
        mkcert=MkcertProvider(
            runner=runner,
            files=files,
            work_dir=config.mkcert.work_dir,
            mkcert_bin=config.mkcert.bin,
            package_managers=config.mkcert.package_managers,
        ),
        nginx=NginxProvider(
            templates=templates,
            runner=runner,
            files=files,
            ssl_dir=config.ssl_dir,
            sites_available=config.nginx.sites_available,
            sites_enabled=config.nginx.sites_enabled,
            nginx_bin=config.nginx.bin,
        ),
        systemd=SystemdProvider(runner=runner, systemctl_bin=config.systemd.systemctl_bin),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _authorize() -> bool:
    return is_root()


def _provisioner(runtime: RuntimeContext) -> Provisioner:
    return Provisioner(
        runtime.config,
        registry=runtime.registry,
        ca=runtime.mkcert,
        proxy=runtime.nginx,
        services=runtime.systemd,
        files=runtime.files,
        locks=runtime.locks,
        authorize=_authorize,
        console=console,
    )


def _fail(message: str, code: int) -> NoReturn:
    err_console.print(f"[bold red]✗[/bold red] [red]{escape(message)}[/red]")
    raise typer.Exit(code=code)


def _command_error(op: OperationScope, exc: LocalstackerError) -> NoReturn:
    """Record *exc* on the operation and terminate the command."""
    message = str(exc) or type(exc).__name__
    rc = int(exc.exit_code)
    op.error(message, rc=rc, context={"kind": exc.kind})
    _fail(message, rc)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the localstacker version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Echo every external command before running it.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Report intended changes without touching the system.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"localstacker {__version__}")
        raise typer.Exit(code=0)

    try:
        runtime = _ensure_runtime(ctx, config_file, dry_run=dry_run, verbose=verbose)
    except LocalstackerError as exc:
        _fail(str(exc), int(exc.exit_code))

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)

    if runtime.config.dry_run:
        console.print("[yellow]🔍 DRY RUN MODE - No changes will be made[/yellow]")
        console.print()


@app.command()
def setup(
    ctx: typer.Context,
    domain: str = typer.Option(..., "--domain", "-d", help="Domain to serve, e.g. app.local."),
    port: int = typer.Option(..., "--port", "-p", help="Backend port on 127.0.0.1."),
    service: str | None = typer.Option(
        None,
        "--service",
        "-s",
        help="Systemd service to restart once the proxy is live.",
    ),
    template: Path | None = typer.Option(
        None,
        "--template",
        "-t",
        dir_okay=False,
        help="Custom nginx template using {{domain}} and {{port}} placeholders.",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Issue a certificate and expose DOMAIN over HTTPS."""
    runtime = _get_runtime(ctx)
    provisioner = _provisioner(runtime)
    request = ProvisionRequest(domain=domain, port=port, service=service, template=template)

    with runtime.logger.operation(
        "setup",
        args={
            "domain": domain,
            "port": port,
            "service": service,
            "template": template,
            "dry_run": runtime.config.dry_run,
        },
        target={"kind": "domain", "domain": domain},
    ) as op:
        try:
            provisioner.preflight(request)
            console.print(f"[blue]ℹ[/blue] Setting up SSL for {domain} -> localhost:{port}")
            if not yes and not typer.confirm(
                "This will:\n"
                f"  • Generate SSL certificate for {domain}\n"
                "  • Create Nginx configuration\n"
                "  • Enable the site\n"
                "  • Reload Nginx\n\n"
                "Continue?",
                default=True,
            ):
                console.print("[yellow]⚠ Setup cancelled by user[/yellow]")
                op.warning("Setup cancelled by user.", warnings=["cancelled"])
                return
            result = provisioner.provision(request, op=op)
        except LocalstackerError as exc:
            _command_error(op, exc)

        context = {"outcome": result.outcome.value, "record": result.record.to_dict()}
        if result.dry_run:
            console.print(f"[yellow]Dry run[/yellow]: {domain} would be {result.outcome.value}.")
            op.success("Dry run complete.", changed=0, context=context)
            return

        _render_setup_summary(result.record)
        if result.warnings:
            op.warning(
                f"Domain {domain} {result.outcome.value} with warnings.",
                warnings=list(result.warnings),
                changed=1,
                context=context,
            )
        else:
            op.success(f"Domain {domain} {result.outcome.value}.", changed=1, context=context)


def _render_setup_summary(record: DomainRecord) -> None:
    rule = "═" * 43
    console.print()
    console.print(f"[green]{rule}[/green]")
    console.print("[bold green]✓ Setup completed successfully![/bold green]")
    console.print(f"[green]{rule}[/green]")
    console.print()
    console.print(f"  [bold]URL:[/bold] https://{record.domain}")
    console.print(f"  [bold]Backend:[/bold] localhost:{record.port}")
    console.print()
    console.print("  [bold]Next steps:[/bold]")
    console.print(f"    • Make sure your backend is running on port {record.port}")
    console.print(f"    • Add {record.domain} to your /etc/hosts if needed")
    console.print(f"    • Visit https://{record.domain} in your browser")
    console.print()


@app.command("list")
def list_domains(
    ctx: typer.Context,
    detailed: bool = typer.Option(False, "--detailed", "-d", help="Show file paths and times."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit registered domains as JSON instead of a table.",
    ),
) -> None:
    """List registered domains."""
    runtime = _get_runtime(ctx)

    with runtime.logger.operation(
        "list",
        args={"detailed": detailed, "json": json_output},
        target={"kind": "domains"},
    ) as op:
        try:
            records = sorted(runtime.registry.list_domains(), key=lambda item: item.domain)
        except LocalstackerError as exc:
            _command_error(op, exc)

        if json_output:
            console.print_json(data={"domains": [record.to_dict() for record in records]})
            op.success("Reported domains as JSON.", changed=0)
            return

        if not records:
            console.print("[yellow]No domains configured yet.[/yellow]")
            console.print()
            console.print(
                "Use [cyan]localstacker setup --domain <domain> --port <port>[/cyan] "
                "to setup a new domain"
            )
            op.success("No domains registered.", changed=0)
            return

        console.print(_domains_table(records, detailed=detailed))
        if not detailed:
            console.print(
                f"[dim]Showing {len(records)} domain(s). Use --detailed for more info.[/dim]"
            )
        op.success("Reported domains.", changed=0, context={"count": len(records)})


def _domains_table(records: Sequence[DomainRecord], *, detailed: bool) -> Table:
    table = Table(title="Configured SSL Domains", show_header=True, header_style="bold magenta")
    table.add_column("", width=1)
    table.add_column("Domain", style="bold cyan")
    table.add_column("Backend", style="yellow")
    if detailed:
        table.add_column("Service")
        table.add_column("Created")
        table.add_column("SSL Cert")
        table.add_column("SSL Key")
        table.add_column("Nginx Config")
    for record in records:
        icon = "[green]✓[/green]" if record.enabled else "[red]✗[/red]"
        row = [icon, record.domain, f"localhost:{record.port}"]
        if detailed:
            row.extend(
                [
                    record.service or "-",
                    record.updated_at or record.created_at,
                    str(record.ssl_cert_path),
                    str(record.ssl_key_path),
                    str(record.nginx_config_path),
                ]
            )
        table.add_row(*row)
    return table


@app.command()
def remove(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Registered domain to remove."),
    remove_certs: bool = typer.Option(
        False,
        "--remove-certs",
        help="Delete the managed certificate and key as well.",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Deactivate DOMAIN and remove its configuration."""
    runtime = _get_runtime(ctx)
    provisioner = _provisioner(runtime)

    with runtime.logger.operation(
        "remove",
        args={"domain": domain, "remove_certs": remove_certs, "dry_run": runtime.config.dry_run},
        target={"kind": "domain", "domain": domain},
    ) as op:
        try:
            provisioner.require_registered(domain)
            if not yes:
                prompt = f"Remove SSL configuration for {domain}?"
                if remove_certs:
                    prompt += "\n  This will also remove SSL certificates."
                if not typer.confirm(prompt, default=False):
                    console.print("[yellow]⚠ Removal cancelled by user[/yellow]")
                    op.warning("Removal cancelled by user.", warnings=["cancelled"])
                    return
            result = provisioner.deprovision(domain, remove_certs=remove_certs, op=op)
        except LocalstackerError as exc:
            _command_error(op, exc)

        context = {
            "record": result.record.to_dict(),
            "certificates_removed": result.certificates_removed,
        }
        if result.dry_run:
            console.print(f"[yellow]Dry run[/yellow]: {domain} would be removed.")
            op.success("Dry run complete.", changed=0, context=context)
            return

        console.print()
        console.print(f"[bold green]✓[/bold green] [green]Successfully removed {domain}[/green]")
        console.print()
        op.success(f"Domain {domain} removed.", changed=1, context=context)


@app.command()
def status(
    ctx: typer.Context,
    domain: str | None = typer.Argument(None, help="Only report this domain."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit probe results as JSON.",
    ),
) -> None:
    """Probe certificates, nginx, the backend and HTTPS for registered domains."""
    runtime = _get_runtime(ctx)
    evaluator = StatusEvaluator(
        runtime.registry,
        proxy=runtime.nginx,
        services=runtime.systemd,
        runner=runtime.runner,
        config=runtime.config.status,
    )

    with runtime.logger.operation(
        "status",
        args={"domain": domain, "json": json_output},
        target={"kind": "domain", "domain": domain} if domain else {"kind": "domains"},
    ) as op:
        try:
            statuses = evaluator.evaluate(domain)
        except LocalstackerError as exc:
            _command_error(op, exc)

        unhealthy = [item.domain for item in statuses if not item.healthy]
        if json_output:
            console.print_json(data={"domains": [item.to_dict() for item in statuses]})
        elif not statuses:
            console.print("[yellow]No domains configured.[/yellow]")
        else:
            console.print()
            console.print("[bold underline]Domain Status Report[/bold underline]")
            console.print()
            for item in statuses:
                _render_status(item)

        context = {"checked": len(statuses), "unhealthy": unhealthy}
        if unhealthy:
            op.warning(
                "Drift detected.",
                warnings=[f"{name}: drift" for name in unhealthy],
                context=context,
            )
        else:
            op.success("Status reported.", changed=0, context=context)


def _mark(ok: bool, good: str, bad: str, *, bad_style: str = "red") -> str:
    if ok:
        return f"[green]✓ {good}[/green]"
    return f"[{bad_style}]✗ {bad}[/{bad_style}]"


def _render_status(item: DomainStatus) -> None:
    console.print(f"[bold]Domain:[/bold] [cyan]{item.domain}[/cyan]")
    console.print(f"  SSL Certificate: {_mark(item.certificate_present, 'Present', 'Missing')}")
    if item.certificate_expires_at is not None:
        console.print(f"  Expires: {item.certificate_expires_at.isoformat()}")
    console.print(f"  Nginx Config: {_mark(item.config_present, 'Present', 'Missing')}")
    console.print(f"  Site Enabled: {_mark(item.site_enabled, 'Yes', 'No')}")
    if item.port_listening:
        console.print(f"  Backend Port: [green]{item.port} (listening)[/green]")
    else:
        console.print(f"  Backend Port: [yellow]{item.port} (not listening)[/yellow]")
    if item.service:
        style = {"running": "green", "stopped": "yellow"}.get(item.service_state or "", "red")
        console.print(
            f"  Service: [{style}]{escape(item.service)} ({item.service_state})[/{style}]"
        )
    console.print(
        "  HTTPS Check: "
        + _mark(item.https_reachable, "Accessible", "Not accessible", bad_style="yellow")
    )
    if item.drift:
        console.print(f"  [red]Drift:[/red] {', '.join(item.drift)}")
    console.print()


@app.command("install-cert-tool")
def install_cert_tool(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Reinstall even if present."),
) -> None:
    """Install mkcert and its local certificate authority."""
    runtime = _get_runtime(ctx)
    provisioner = _provisioner(runtime)

    with runtime.logger.operation(
        "install-cert-tool",
        args={"force": force, "dry_run": runtime.config.dry_run},
        target={"kind": "cert-tool", "tool": "mkcert"},
    ) as op:
        try:
            result = provisioner.install_certificate_tool(force=force, op=op)
        except LocalstackerError as exc:
            _command_error(op, exc)

        context = {"tool_installed": result.tool_installed, "caroot": result.caroot}
        if result.caroot is not None:
            console.print(f"[blue]ℹ[/blue] CA root: {result.caroot}")
        console.print("[bold green]✓[/bold green] [green]mkcert is ready[/green]")
        op.success("Certificate tool ready.", changed=int(result.tool_installed), context=context)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
