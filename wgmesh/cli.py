"""
wgmesh CLI - Command line interface for WireGuard mesh networking.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List

import click
from rich.console import Console
from rich.table import Table

from .config import Config, set_config
from .auth.identity import NodeIdentity, generate_node_identity
from .errors import InvalidHost, MeshError
from .mesh.client import MeshClient
from .mesh.host import DEFAULT_API_PORT, Endpoint, Host

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler()]
    )


def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


def parse_endpoints(values: tuple) -> List[Endpoint]:
    """Parse `ip:port` or `iface=ip:port` options."""
    endpoints = []
    for value in values:
        interface = None
        if "=" in value:
            interface, value = value.split("=", 1)
        try:
            endpoints.append(Endpoint.parse(value, interface=interface))
        except InvalidHost as e:
            raise click.BadParameter(str(e), param_hint="--endpoint")
    return endpoints


def hosts_table(hosts: List[Host]) -> Table:
    table = Table(title=f"Hosts ({len(hosts)})")
    table.add_column("Host ID", style="cyan", overflow="fold")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Endpoints")
    table.add_column("Tunnel address", style="dim")
    for host in hosts:
        status = "[green]connected[/green]" if host.is_connected else "[red]disconnected[/red]"
        table.add_row(
            host.id,
            host.name or "",
            status,
            ", ".join(e.address for e in host.endpoints) or "[dim]none[/dim]",
            host.wireguard_address or "",
        )
    return table


def call_daemon(coro_fn):
    """Run a client call against a daemon, exiting cleanly on failure."""
    async def run():
        async with MeshClient() as client:
            return await coro_fn(client)

    try:
        return run_async(run())
    except MeshError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)


def daemon_option(f):
    return click.option(
        '--daemon', '-d', default=None,
        help='Daemon API URL (defaults to the local daemon)'
    )(f)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(), help='Data directory')
@click.pass_context
def main(ctx, verbose, data_dir):
    """wgmesh - self-organizing WireGuard mesh"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    config = Config.load(Path(data_dir) if data_dir else None)
    set_config(config)
    ctx.obj['config'] = config
    setup_logging(verbose)


@main.command()
@click.option('--name', '-n', help='Node name (defaults to hostname)')
@click.option('--host-id', help='Host id (defaults to the public key)')
@click.option('--endpoint', '-e', multiple=True, help='WireGuard endpoint, ip:port or iface=ip:port')
@click.option('--wireguard-address', '-a', help='Tunnel address (defaults to a random fc00::/7 address)')
@click.option('--interface', '-i', help='WireGuard interface to manage')
@click.option('--port', '-p', default=DEFAULT_API_PORT, type=int, help='API port')
@click.option('--force', is_flag=True, help='Overwrite an existing identity')
@click.pass_context
def init(ctx, name, host_id, endpoint, wireguard_address, interface, port, force):
    """Generate this node's keys and identity."""
    config: Config = ctx.obj['config']

    if config.identity_path.exists() and not force:
        identity = NodeIdentity.load(config.identity_path)
        console.print("[yellow]⚠️  This node is already initialized.[/yellow]")
        console.print(f"   Host ID: [cyan]{identity.host_id}[/cyan]")
        if not click.confirm("\nReinitialize? This will replace your keys."):
            return

    identity = generate_node_identity(
        name=name,
        host_id=host_id,
        endpoints=parse_endpoints(endpoint),
        wireguard_address=wireguard_address,
    )
    identity.save(config.identity_path)

    config.wireguard_interface = interface or config.wireguard_interface
    config.server.port = port
    config.save()

    console.print("\n[bold green]✓ Node initialized[/bold green]\n")
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Host ID", f"[cyan]{identity.host_id}[/cyan]")
    table.add_row("Name", identity.name)
    table.add_row("Public key", identity.public_key)
    table.add_row("Tunnel address", identity.wireguard_address)
    table.add_row("Endpoints", ", ".join(e.address for e in identity.endpoints) or "auto-detect")
    table.add_row("Data directory", str(config.data_dir))
    console.print(table)


@main.command()
@click.option('--host', '-h', default=None, help='Host to bind to')
@click.option('--port', '-p', default=None, type=int, help='Port to bind to')
@click.option('--bootstrap', '-b', multiple=True, help='Mesh member to join on startup')
@click.option('--interface', '-i', help='WireGuard interface to manage')
@click.option('--no-mdns', is_flag=True, help='Disable mDNS advertisement')
@click.pass_context
def server(ctx, host, port, bootstrap, interface, no_mdns):
    """Start the wgmesh daemon."""
    config: Config = ctx.obj['config']

    if not config.identity_path.exists():
        console.print("[red]Node not initialized. Run 'wgmesh init' first.[/red]")
        sys.exit(1)

    if host:
        config.server.host = host
    if port:
        config.server.port = port
    if bootstrap:
        config.bootstrap = list(bootstrap)
    if interface:
        config.wireguard_interface = interface
    if no_mdns:
        config.mdns_enabled = False

    console.print("\n[bold blue]Starting wgmesh daemon[/bold blue]")
    console.print(f"   Listening on: http://{config.server.host}:{config.server.port}")
    console.print(f"   WireGuard: {config.wireguard_interface or '[yellow]dry run[/yellow]'}")
    console.print("   Press Ctrl+C to stop\n")

    from .api.server import run_server
    run_server(config)


@main.command()
@click.argument('bootstrap', required=False)
@click.option('--discover', is_flag=True, help='Find a bootstrap daemon via mDNS')
@daemon_option
@click.pass_context
def connect(ctx, bootstrap, discover, daemon):
    """Join the mesh through BOOTSTRAP (host:port or URL)."""
    config: Config = ctx.obj['config']

    if not bootstrap and not discover:
        raise click.UsageError("Give a BOOTSTRAP address or --discover")

    if not bootstrap:
        from .mesh.discovery import MeshDiscovery

        async def find():
            discovery = MeshDiscovery(host_id="wgmesh-cli")
            if not await discovery.start():
                return []
            try:
                return await discovery.find_bootstrap(timeout=3.0)
            finally:
                await discovery.stop()

        peers = run_async(find())
        if not peers:
            console.print("[red]✗ No wgmesh daemons found on the local network[/red]")
            sys.exit(1)
        bootstrap = peers[0].address
        console.print(f"Found daemon {peers[0].name} at {bootstrap}")

    console.print(f"\n[bold blue]Joining mesh via {bootstrap}...[/bold blue]\n")
    url = daemon or config.local_url
    data = call_daemon(lambda c: c.local_join(url, bootstrap))
    hosts = [Host.from_dict(h) for h in data.get("hosts", [])]
    console.print("[bold green]✓ Joined mesh[/bold green]\n")
    console.print(hosts_table(hosts))


@main.command()
@daemon_option
@click.pass_context
def disconnect(ctx, daemon):
    """Leave the mesh."""
    config: Config = ctx.obj['config']
    url = daemon or config.local_url
    data = call_daemon(lambda c: c.local_leave(url))
    console.print(f"[green]✓ Left mesh[/green] (notified {len(data.get('sent', []))} peers)")
    if data.get("failed"):
        console.print(f"[yellow]Could not reach: {', '.join(data['failed'])}[/yellow]")


@main.command('add-host')
@click.argument('host_id')
@click.option('--public-key', '-u', required=True, help='WireGuard public key')
@click.option('--endpoint', '-e', multiple=True, required=True, help='ip:port or iface=ip:port')
@click.option('--name', '-n', help='Display name')
@click.option('--wireguard-address', '-a', help='Tunnel address (allowed-ips)')
@click.option('--api-port', default=DEFAULT_API_PORT, type=int, help="The host's wgmesh API port")
@daemon_option
@click.pass_context
def add_host(ctx, host_id, public_key, endpoint, name, wireguard_address, api_port, daemon):
    """Register another host with the mesh."""
    config: Config = ctx.obj['config']
    host = Host(
        id=host_id,
        public_key=public_key,
        endpoints=tuple(parse_endpoints(endpoint)),
        name=name,
        wireguard_address=wireguard_address,
        api_port=api_port,
    )
    url = daemon or config.local_url
    hosts = call_daemon(lambda c: c.connect(url, host))
    console.print(f"[green]✓ Added {host_id}[/green]\n")
    console.print(hosts_table(hosts))


@main.command('remove-host')
@click.argument('host_id')
@daemon_option
@click.pass_context
def remove_host(ctx, host_id, daemon):
    """Mark a host as disconnected across the mesh."""
    config: Config = ctx.obj['config']
    url = daemon or config.local_url
    call_daemon(lambda c: c.disconnect(url, host_id))
    console.print(f"Removed {host_id} from network")


@main.command()
@daemon_option
@click.pass_context
def hosts(ctx, daemon):
    """List the hosts a daemon knows about."""
    config: Config = ctx.obj['config']
    url = daemon or config.local_url
    console.print(hosts_table(call_daemon(lambda c: c.discover(url))))


@main.command()
@daemon_option
@click.pass_context
def status(ctx, daemon):
    """Show node and daemon status."""
    config: Config = ctx.obj['config']

    if not config.identity_path.exists():
        console.print("[yellow]Node not initialized. Run 'wgmesh init' first.[/yellow]")
        return

    identity = NodeIdentity.load(config.identity_path)

    console.print("\n[bold]Node Status[/bold]")
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Host ID", f"[cyan]{identity.host_id}[/cyan]")
    table.add_row("Name", identity.name)
    table.add_row("Tunnel address", identity.wireguard_address)
    table.add_row("Data directory", str(config.data_dir))

    url = daemon or config.local_url

    async def fetch():
        async with MeshClient(timeout=3.0) as client:
            return await client.status(url)

    try:
        info = run_async(fetch())
    except MeshError:
        table.add_row("Daemon", f"[red]not reachable at {url}[/red]")
    else:
        registry = info.get("registry", {})
        table.add_row("Daemon", f"[green]{info.get('state', 'unknown')}[/green] at {url}")
        table.add_row("Hosts", f"{registry.get('connected', 0)} connected / {registry.get('hosts', 0)} known")
        table.add_row("Events", str(info.get("event_log", {}).get("recent", 0)))

    console.print(table)
    console.print()


if __name__ == "__main__":
    main()
