"""tasksync CLI - Serve Command

Webhook receiver and sync API server.
"""
import click

from ..errors import ConfigurationError
from ..server import start_server
from .common import get_base_path, fail


@click.command('serve')
@click.option('--host', default='127.0.0.1',
              help='Host to bind to (default: 127.0.0.1)')
@click.option('--port', default=8421, type=int,
              help='Port to bind to (default: 8421)')
@click.pass_context
def serve(ctx, host: str, port: int) -> None:
    """Start the webhook receiver and sync API server.

    Starts a FastAPI server that provides:
    - POST /webhooks/monday for board events
    - /api/v1/sync endpoints to inspect and trigger syncs

    Examples:
        tasksync serve
        tasksync serve --host 0.0.0.0 --port 9000
    """
    base_path = get_base_path(ctx.obj.get('data_dir'))
    if not base_path.exists():
        fail("tasksync not initialized. Run 'tasksync init' first.")

    click.echo(click.style("Starting tasksync server...", fg="cyan", bold=True))
    click.echo(f"  Host: {host}")
    click.echo(f"  Port: {port}")
    click.echo(f"  Webhook URL: http://{host}:{port}/webhooks/monday")
    click.echo()

    try:
        start_server(host=host, port=port, base_path=base_path)
    except ConfigurationError as e:
        fail(str(e))
