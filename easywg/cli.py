"""
Command-line interface for easywg.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import TYPE_CHECKING

import click

from easywg.common.config import Config
from easywg.common.exceptions import ProvisioningError, ValidationError
from easywg.common.logging_config import setup_logging
from easywg.common.models import AddServerRequest, SubscriptionPlan, User
from easywg.notifications import build_notifier
from easywg.scheduler import SubscriptionReconciler
from easywg.server import start_server
from easywg.server.domain.server_handler import ServerHandler
from easywg.server.repository import JsonRepository
from easywg.server.services import SubscriptionService
from easywg.vpn import ProvisioningEngine

if TYPE_CHECKING:
    from collections.abc import Iterator


class Context:
    """Lazily built components shared by the commands of one invocation."""

    def __init__(self) -> None:
        self._service: SubscriptionService | None = None

    @property
    def config(self) -> Config:
        return Config()

    @property
    def service(self) -> SubscriptionService:
        if self._service is None:
            config = self.config
            setup_logging(config)
            repository = JsonRepository(config.DATABASE_FILE_PATH)
            engine = ProvisioningEngine(config)
            notifier = build_notifier(config)
            server_handler = ServerHandler(repository=repository, engine=engine)
            reconciler = SubscriptionReconciler(
                repository,
                engine,
                notifier,
                config=config,
                release_slot=server_handler.release_slot,
            )
            self._service = SubscriptionService(
                config,
                repository,
                engine,
                notifier,
                reconciler=reconciler,
                server_handler=server_handler,
            )
        return self._service

    def close(self) -> None:
        if self._service is not None:
            self._service.close()
            self._service.engine.close()


pass_context = click.make_pass_decorator(Context, ensure=True)


@contextmanager
def handle_errors() -> Iterator[None]:
    try:
        yield
    except (ValidationError, ProvisioningError) as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option(
    "--data-dir",
    default=None,
    help="Directory for the database and client configs (default: ./data)",
)
@click.pass_context
def cli(ctx: click.Context, data_dir: str | None) -> None:
    """easywg: WireGuard provisioning and subscription lifecycle"""
    if data_dir:
        os.environ["EASYWG_DATA_DIR"] = data_dir
    obj = ctx.ensure_object(Context)
    ctx.call_on_close(obj.close)


@cli.command()
@click.option(
    "--host",
    default=None,
    help="Host to bind server to (default: from EASYWG_SERVER_HOST env or 127.0.0.1)",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Port to bind server to (default: from EASYWG_SERVER_PORT env or 8000)",
)
def serve(host: str | None, port: int | None) -> None:
    """Start the admin server and the subscription reconciler"""
    if host:
        os.environ["EASYWG_SERVER_HOST"] = host
    if port:
        os.environ["EASYWG_SERVER_PORT"] = str(port)

    if not os.getenv("EASYWG_ADMIN_PASSWORD"):
        msg = "ERROR: EASYWG_ADMIN_PASSWORD env var must be set to a secure password."
        raise click.ClickException(msg)

    start_server(Config())


@cli.command("add-server")
@click.argument("ip")
@click.option("--port", default=22, show_default=True, help="SSH port")
@click.option("--user", "ssh_user", default="root", show_default=True)
@click.option("--password", "ssh_password", default=None, help="SSH password")
@click.option("--key-path", "ssh_key_path", default=None, help="SSH private key file")
@click.option("--max-clients", default=10, show_default=True)
@click.option("--setup/--no-setup", default=True, help="Install WireGuard right away")
@pass_context
def add_server(  # noqa: PLR0913
    obj: Context,
    ip: str,
    port: int,
    ssh_user: str,
    ssh_password: str | None,
    ssh_key_path: str | None,
    max_clients: int,
    setup: bool,  # noqa: FBT001
) -> None:
    """Register a VPN server"""
    req = AddServerRequest(
        password="",
        ip=ip,
        port=port,
        ssh_user=ssh_user,
        ssh_password=ssh_password,
        ssh_key_path=ssh_key_path,
        max_clients=max_clients,
        setup=setup,
    )
    with handle_errors():
        server = obj.service.add_server(req)
    click.echo(f"Server #{server.id} added ({server.address})")


@cli.command("setup-server")
@click.argument("server_id", type=int)
@pass_context
def setup_server(obj: Context, server_id: int) -> None:
    """Install and start WireGuard on a server"""
    with handle_errors():
        server = obj.service.setup_server(server_id)
    click.echo(f"Server #{server.id} is ready")


@cli.command("check-server")
@click.argument("server_id", type=int)
@pass_context
def check_server(obj: Context, server_id: int) -> None:
    """Check a server's reachability and peer count"""
    with handle_errors():
        report = obj.service.check_server(server_id)
    click.echo(f"Reachable: {'yes' if report.reachable else 'no'}")
    click.echo(f"WireGuard installed: {'yes' if report.wireguard_installed else 'no'}")
    click.echo(f"Config present: {'yes' if report.config_present else 'no'}")
    click.echo(f"Peers: {report.peer_count}")
    if report.error:
        click.echo(f"Error: {report.error}")


@cli.command("add-user")
@click.argument("telegram_id", type=int)
@click.option("--username", default="")
@click.option("--admin", is_flag=True, help="Receive expiry reports")
@pass_context
def add_user(obj: Context, telegram_id: int, username: str, admin: bool) -> None:  # noqa: FBT001
    """Register a user"""
    with handle_errors():
        user = obj.service.repository.add_user(
            User(telegram_id=telegram_id, username=username, is_admin=admin)
        )
    click.echo(f"User #{user.id} added")


@cli.command("add-plan")
@click.argument("name")
@click.argument("duration", type=click.IntRange(min=1))
@click.option("--price", default=0.0, type=float)
@click.option("--description", default="")
@pass_context
def add_plan(
    obj: Context, name: str, duration: int, price: float, description: str
) -> None:
    """Register a subscription plan lasting DURATION days"""
    with handle_errors():
        plan = obj.service.repository.add_subscription_plan(
            SubscriptionPlan(
                name=name, duration=duration, price=price, description=description
            )
        )
    click.echo(f"Plan #{plan.id} added")


@cli.command("create-client")
@click.argument("server_id", type=int)
@click.argument("name")
@pass_context
def create_client(obj: Context, server_id: int, name: str) -> None:
    """Create a peer on a server and write its client config"""
    with handle_errors():
        server = obj.service.repository.get_server_by_id(server_id)
        path = obj.service.engine.create_client_config(server, name)
    click.echo(f"Client config written to {path}")


@cli.command("remove-client")
@click.argument("server_id", type=int)
@click.argument("name")
@pass_context
def remove_client(obj: Context, server_id: int, name: str) -> None:
    """Remove a peer from a server"""
    with handle_errors():
        server = obj.service.repository.get_server_by_id(server_id)
        removed = obj.service.engine.remove_client(server, name)
    click.echo(f"Client {name} removed" if removed else f"Client {name} was not present")


@cli.command()
@click.argument("user_id", type=int)
@click.argument("plan_id", type=int)
@pass_context
def provision(obj: Context, user_id: int, plan_id: int) -> None:
    """Provision a subscription for a user"""
    with handle_errors():
        subscription = obj.service.provision(user_id, plan_id)
    click.echo(
        f"Subscription #{subscription.id} active until "
        f"{subscription.end_date:%d.%m.%Y}, config {subscription.config_file_path}"
    )


@cli.command()
@click.argument("subscription_id", type=int)
@pass_context
def block(obj: Context, subscription_id: int) -> None:
    """Suspend a subscription's VPN access"""
    with handle_errors():
        result = obj.service.block(subscription_id)
    click.echo(f"[{result.outcome.value}] {result.message}")


@cli.command()
@click.argument("subscription_id", type=int)
@pass_context
def unblock(obj: Context, subscription_id: int) -> None:
    """Restore a subscription's VPN access"""
    with handle_errors():
        result = obj.service.unblock(subscription_id)
    click.echo(f"[{result.outcome.value}] {result.message}")


@cli.command()
@click.argument("subscription_id", type=int)
@pass_context
def revoke(obj: Context, subscription_id: int) -> None:
    """Revoke a subscription and remove its peer"""
    with handle_errors():
        result = obj.service.revoke(subscription_id)
    click.echo(f"[{result.outcome.value}] {result.message}")


@cli.command()
@pass_context
def sweep(obj: Context) -> None:
    """Run one subscription sweep now"""
    reconciler = obj.service.reconciler
    assert reconciler is not None
    result = reconciler.sweep()
    if result.error:
        raise click.ClickException(f"Sweep failed: {result.error}")
    click.echo(
        f"Checked {result.checked}, expired {len(result.expired)}, "
        f"warned {len(result.warned)}, revoke failures {len(result.revoke_failures)}"
    )


if __name__ == "__main__":
    cli()
