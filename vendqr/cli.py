# Commands (run with FLASK_APP=vendqr or `flask --app vendqr ...`):
# - flask sessions purge
#   Delete customer sessions past their expiry. Meant for cron, not the request path.
# - flask sessions count --customer-id 7
#   Number of live sessions held by a customer.
# - flask machines qr 42 --out qr_codes/machine_42.png
#   Render the stored QR token of a machine to a PNG file.
import click
from flask.cli import AppGroup

from .models import db, VendingMachine
from .services import qr, sessions

sessions_cli = AppGroup('sessions', help='Customer session maintenance.')
machines_cli = AppGroup('machines', help='Vending machine utilities.')


@sessions_cli.command('purge')
def purge_sessions():
    count = sessions.delete_expired()
    click.echo(f'Deleted {count} expired session(s).')


@sessions_cli.command('count')
@click.option('--customer-id', type=int, required=True)
def count_sessions(customer_id):
    click.echo(str(sessions.get_customer_session_count(customer_id)))


@machines_cli.command('qr')
@click.argument('machine_id', type=int)
@click.option('--out', default=None, help='Output PNG path')
def render_machine_qr(machine_id, out):
    machine = db.session.get(VendingMachine, machine_id)
    if machine is None or not machine.qr_code_data:
        raise click.ClickException(f'machine {machine_id} has no QR code')
    path = out or f'qr_codes/machine_{machine_id}.png'
    qr.render_image(machine.qr_code_data, path)
    click.echo(f'QR written to {path}')


def register_commands(app):
    app.cli.add_command(sessions_cli)
    app.cli.add_command(machines_cli)
