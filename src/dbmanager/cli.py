import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .constants import DEFAULT_CONFIG_FILE, FILESYSTEM_ROOT, STORAGE_DIR_MODE
from .core import DatabaseManager
from .errors import DbManagerError, OrchestrationError
from .models import DeploymentRequest, EngineType
from .services.config_loader import ConfigLoader
from .services.container_spec import load_templates
from .services.filesystem import FileSystemService

console = Console()


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


def _parse_env(entries):
    environment = {}
    for entry in entries:
        key, separator, value = entry.partition("=")
        if not separator or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got '{entry}'.", param_hint="--env")
        environment[key] = value
    return environment


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--socket", "socket_path", required=False, help="Path to the Docker/Podman socket.")
@click.option(
    "--dialect",
    required=False,
    type=click.Choice(["docker", "podman"]),
    help="Runtime API dialect. Inferred from the socket path when omitted.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, socket_path, dialect, verbose, log_file):
    """Deploy and manage database containers on Docker or Podman."""
    logger = logging.getLogger("dbmanager")

    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = ConfigLoader().load(resolved_config)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.obj = {
        "socket_path": _resolve_option(socket_path, config_values, "socket_path"),
        "dialect": _resolve_option(dialect, config_values, "dialect"),
        "label_namespace": config_values.get("label_namespace"),
        "filesystem_root": config_values.get("filesystem_root", FILESYSTEM_ROOT),
        "storage_mode": str(config_values.get("storage_mode", STORAGE_DIR_MODE)),
        "default_uid": config_values.get("default_uid"),
        "default_gid": config_values.get("default_gid"),
        "identity_timeout": config_values.get("identity_timeout"),
        "templates": config_values.get("templates"),
    }


def _manager(ctx) -> DatabaseManager:
    settings = ctx.obj
    kwargs = {
        "socket_path": settings["socket_path"],
        "dialect": settings["dialect"],
        "label_namespace": settings["label_namespace"],
        "filesystem_root": settings["filesystem_root"],
        "storage_mode": settings["storage_mode"],
        "templates": settings["templates"],
    }
    if settings["default_uid"] is not None:
        kwargs["default_uid"] = int(settings["default_uid"])
    if settings["default_gid"] is not None:
        kwargs["default_gid"] = int(settings["default_gid"])
    if settings["identity_timeout"] is not None:
        kwargs["identity_timeout"] = float(settings["identity_timeout"])

    try:
        return DatabaseManager(**kwargs)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.pass_context
def info(ctx):
    """Show runtime version and host information."""
    try:
        runtime_info = _manager(ctx).info()
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title=f"{runtime_info.dialect.value.capitalize()} runtime")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Version", runtime_info.version)
    table.add_row("API version", runtime_info.api_version)
    table.add_row("OS / Arch", f"{runtime_info.os} / {runtime_info.arch}")
    table.add_row("Containers", str(runtime_info.containers))
    table.add_row("Images", str(runtime_info.images))
    console.print(table)


@main.command()
@click.pass_context
def health(ctx):
    """Check that the runtime answers and meets the minimum version."""
    report = _manager(ctx).health()
    colors = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}
    status = report["status"]
    console.print(f"[{colors[status]}]Runtime is {status}[/{colors[status]}]")
    console.print(f"Socket: {report['socket_path']} ({report['dialect']})")
    if "version" in report:
        console.print(f"Version: {report['version']} (minimum {report['minimum_version']})")
    if report.get("error"):
        console.print(f"[red]{report['error']}[/red]")
    if status == "unhealthy":
        raise SystemExit(1)


@main.command(name="list")
@click.option("--managed", "managed_only", is_flag=True, help="Only containers created by db-manager.")
@click.option("--databases", "databases_only", is_flag=True, help="Only managed database containers.")
@click.pass_context
def list_command(ctx, managed_only, databases_only):
    """List containers."""
    manager = _manager(ctx)
    try:
        containers = manager.list_containers(
            managed_only=managed_only,
            databases_only=databases_only,
        )
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    if not containers:
        console.print("[yellow]No containers found.[/yellow]")
        return

    table = Table()
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Image")
    table.add_column("State")
    table.add_column("Ports")
    table.add_column("Database")
    for record in containers:
        ports = ", ".join(
            f"{port.host_port}->{port.container_port}/{port.protocol}"
            if port.host_port
            else f"{port.container_port}/{port.protocol}"
            for port in record.ports
        )
        database = record.labels.get(manager.labels.database_type, "")
        table.add_row(record.id[:12], record.name, record.image, record.state.value, ports, database)
    console.print(table)


@main.command()
@click.argument("container_id")
@click.pass_context
def inspect(ctx, container_id):
    """Show details of one container."""
    try:
        record = _manager(ctx).get_container(container_id)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"[bold]{record.name}[/bold] ({record.id})")
    console.print(f"Image: {record.image}")
    console.print(f"State: {record.state.value} {record.status}".rstrip())
    console.print(f"Created: {record.created}")
    for port in record.ports:
        console.print(f"Port: {port.host_ip or '0.0.0.0'}:{port.host_port} -> {port.container_port}/{port.protocol}")
    for mount in record.mounts:
        console.print(f"Mount: {mount.source} -> {mount.destination} ({'rw' if mount.rw else 'ro'})")
    for network in record.networks:
        console.print(f"Network: {network.name} {network.ip_address}".rstrip())
    for key, value in sorted(record.labels.items()):
        console.print(f"Label: {key}={value}")


def _lifecycle(ctx, action, container_id, **kwargs):
    manager = _manager(ctx)
    try:
        getattr(manager, f"{action}_container")(container_id, **kwargs)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.argument("container_id")
@click.pass_context
def start(ctx, container_id):
    """Start a container."""
    _lifecycle(ctx, "start", container_id)
    console.print(f"[green]Started {container_id}[/green]")


@main.command()
@click.argument("container_id")
@click.pass_context
def stop(ctx, container_id):
    """Stop a container."""
    _lifecycle(ctx, "stop", container_id)
    console.print(f"[green]Stopped {container_id}[/green]")


@main.command()
@click.argument("container_id")
@click.pass_context
def restart(ctx, container_id):
    """Restart a container."""
    _lifecycle(ctx, "restart", container_id)
    console.print(f"[green]Restarted {container_id}[/green]")


@main.command()
@click.argument("container_id")
@click.option("--force", is_flag=True, help="Remove the container even if it is running.")
@click.pass_context
def remove(ctx, container_id, force):
    """Remove a container."""
    _lifecycle(ctx, "remove", container_id, force=force)
    console.print(f"[green]Removed {container_id}[/green]")


@main.command()
@click.option(
    "--engine",
    required=True,
    type=click.Choice([engine.value for engine in EngineType]),
    help="Database engine to deploy.",
)
@click.option("--name", required=True, help="Database name; the container is named db-<engine>-<name>.")
@click.option("--version", "image_version", required=False, help="Image tag (default: template default).")
@click.option("--root-password", required=True, help="Root/superuser password.")
@click.option("--port", type=int, required=False, help="Host port (default: template port).")
@click.option("--username", required=False, help="Optional application user.")
@click.option("--password", required=False, help="Password of the application user.")
@click.option("--database", required=False, help="Optional database to create on first start.")
@click.option(
    "--storage-path",
    required=False,
    type=click.Path(),
    help="Host directory bind-mounted as the data directory (enables persistent storage).",
)
@click.option("--env", "env_entries", multiple=True, help="Extra environment entry KEY=VALUE.")
@click.pass_context
def deploy(
    ctx,
    engine,
    name,
    image_version,
    root_password,
    port,
    username,
    password,
    database,
    storage_path,
    env_entries,
):
    """Pull, prepare and start a new database container."""
    manager = _manager(ctx)
    template = manager.spec_builder.template_for(EngineType(engine))

    request = DeploymentRequest(
        engine=EngineType(engine),
        name=name,
        version=image_version or template.default_version,
        root_password=root_password,
        port=port if port is not None else template.default_port,
        username=username,
        password=password,
        database=database,
        persistent_storage=bool(storage_path),
        storage_path=storage_path,
        environment=_parse_env(env_entries),
    )

    try:
        result = manager.deploy(request)
    except OrchestrationError as exc:
        if exc.created_but_not_started:
            console.print(f"[yellow]Container {exc.container_id} exists but is not running.[/yellow]")
        raise click.ClickException(str(exc)) from exc
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    click.echo(result.container_id)


@main.command(name="retry-start")
@click.argument("container_id")
@click.pass_context
def retry_start(ctx, container_id):
    """Start a container whose deployment failed at the start stage."""
    manager = _manager(ctx)
    try:
        manager.retry_start(container_id)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.argument("container_id")
@click.option("--tail", type=int, default=100, show_default=True, help="Number of lines to fetch.")
@click.pass_context
def logs(ctx, container_id, tail):
    """Print the last lines of a container's logs."""
    try:
        output = _manager(ctx).logs(container_id, tail=tail)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc
    if output:
        click.echo(output)


@main.command()
@click.argument("container_id")
@click.pass_context
def stats(ctx, container_id):
    """Show a one-shot resource usage snapshot."""
    try:
        snapshot = _manager(ctx).stats(container_id)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title=f"Stats for {container_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("CPU %", f"{snapshot.cpu_percent:.2f}")
    table.add_row("Memory", f"{snapshot.memory_usage} / {snapshot.memory_limit}")
    table.add_row("Memory %", f"{snapshot.memory_percent:.2f}")
    table.add_row("Net RX / TX", f"{snapshot.network_rx_bytes} / {snapshot.network_tx_bytes}")
    table.add_row("Block read / write", f"{snapshot.block_read_bytes} / {snapshot.block_write_bytes}")
    table.add_row("PIDs", str(snapshot.pids))
    console.print(table)


@main.command()
@click.pass_context
def templates(ctx):
    """List the available database engine templates."""
    try:
        engine_templates = load_templates(ctx.obj["templates"])
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table()
    table.add_column("Engine", style="cyan")
    table.add_column("Name")
    table.add_column("Image")
    table.add_column("Default version")
    table.add_column("Versions")
    table.add_column("Port")
    table.add_column("Description")
    for template in engine_templates.values():
        table.add_row(
            template.engine.value,
            template.display_name,
            template.image_repository,
            template.default_version,
            ", ".join(template.available_versions),
            str(template.default_port),
            template.description,
        )
    console.print(table)


def _filesystem(ctx) -> FileSystemService:
    return FileSystemService(
        logger=logging.getLogger("dbmanager"),
        console=console,
        root=ctx.obj["filesystem_root"],
    )


@main.command(name="ls")
@click.argument("path", required=False, default="/")
@click.pass_context
def ls_command(ctx, path):
    """List subdirectories of a host path."""
    try:
        listing = _filesystem(ctx).list_directories(path)
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"[bold]{listing.current_path}[/bold]")
    if listing.parent_path is not None:
        console.print("  ..")
    for directory in listing.directories:
        console.print(f"  {directory}/")


@main.command()
@click.argument("parent")
@click.argument("name")
@click.option("--mode", required=False, help="Octal permissions, e.g. 755.")
@click.option("--owner", type=int, required=False, help="Numeric owner uid.")
@click.option("--group", type=int, required=False, help="Numeric group gid.")
@click.pass_context
def mkdir(ctx, parent, name, mode, owner, group):
    """Create a directory under PARENT."""
    try:
        creation = _filesystem(ctx).create_directory(
            parent,
            name,
            mode=mode,
            owner=owner,
            group=group,
        )
    except DbManagerError as exc:
        raise click.ClickException(str(exc)) from exc

    for warning in creation.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    click.echo(creation.path)


if __name__ == "__main__":
    main()
