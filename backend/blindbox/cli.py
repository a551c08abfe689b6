"""Command line session controllers.

``blindbox teacher ...`` drives the session phase and exports results,
``blindbox student claim`` opens one box, ``blindbox watch`` follows the room.
"""

import logging
import time

import click

from config import Config
from blindbox.services.catalog import CsvCatalogSource
from blindbox.services.export import export_csv, export_filename
from blindbox.services.gate import verify_teacher_password
from blindbox.sync import ClaimArbiter, SessionStore, build_transport


def load_config(**overrides):
    settings = {key: getattr(Config, key) for key in dir(Config) if key.isupper()}
    settings.update({k: v for k, v in overrides.items() if v is not None})
    return settings


def build_store(settings, catalog_source=None):
    transport = build_transport(settings)
    if catalog_source is None:
        catalog_source = CsvCatalogSource(settings.get('CATALOG_URL', ''),
                                          timeout=float(settings.get('REQUEST_TIMEOUT_SEC', 5)))
    return SessionStore(transport, catalog_source, poll_interval=float(settings.get('POLL_INTERVAL_SEC', 3)))


def describe(session, catalog):
    return f"phase={session.phase.value} opened={len(session.assignments)}/{len(catalog)}"


@click.group()
@click.option('--transport', type=click.Choice(['socketio', 'http', 'local']), default=None,
              help='Override the configured transport variant.')
@click.option('--room', default=None, help='Override the configured room id.')
@click.option('-v', '--verbose', is_flag=True, help='Log transport activity.')
@click.pass_context
def main(ctx, transport, room, verbose):
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)
    ctx.ensure_object(dict)
    if 'settings' not in ctx.obj:
        ctx.obj['settings'] = load_config(TRANSPORT=transport, ROOM_ID=room)
    if 'store' not in ctx.obj:
        ctx.obj['store'] = build_store(ctx.obj['settings'])
    ctx.call_on_close(ctx.obj['store'].transport.close)


@main.command()
@click.pass_obj
def status(obj):
    """Show the room's current phase and progress."""
    store = obj['store']
    if not store.refresh():
        click.echo('No session data yet.')
        return
    click.echo(describe(store.session, store.catalog))


@main.group()
@click.option('--password', envvar='BLINDBOX_TEACHER_PASSWORD', prompt=True, hide_input=True)
@click.pass_obj
def teacher(obj, password):
    """Teacher console (password protected)."""
    if not verify_teacher_password(obj['settings'], password):
        raise click.ClickException('Wrong password, access denied.')


def _run_control(ok, store, action):
    if not ok:
        raise click.ClickException(f'{action} failed ({describe(store.session, store.catalog)}).')
    click.echo(f'{action}: {describe(store.session, store.catalog)}')


@teacher.command()
@click.pass_obj
def init(obj):
    """Reset the room and load a fresh catalog."""
    store = obj['store']
    _run_control(store.initialize(), store, 'initialize')


@teacher.command()
@click.pass_obj
def start(obj):
    """Open the boxes: Idle -> Running."""
    store = obj['store']
    _run_control(store.start_session(), store, 'start')


@teacher.command()
@click.pass_obj
def end(obj):
    """Stop claims: Running -> Ended."""
    store = obj['store']
    _run_control(store.end_session(), store, 'end')


@teacher.command()
@click.option('--refetch', is_flag=True, help='Load a new catalog instead of discarding it.')
@click.pass_obj
def reset(obj, refetch):
    """Back to Idle, dropping every claim."""
    store = obj['store']
    _run_control(store.reset_session(refetch_catalog=refetch), store, 'reset')


@teacher.command()
@click.option('--output', '-o', type=click.Path(dir_okay=False), default=None)
@click.pass_obj
def export(obj, output):
    """Write the claims as CSV, sorted by symbol."""
    store = obj['store']
    snapshot = store.current()
    output = output or export_filename()
    with open(output, 'w', encoding='utf-8', newline='') as fh:
        fh.write(export_csv(snapshot))
    click.echo(f'Exported {len(snapshot.session.assignments)} claims to {output}')


@main.group()
def student():
    """Student actions."""


@student.command()
@click.argument('entry_id')
@click.argument('name')
@click.pass_obj
def claim(obj, entry_id, name):
    """Open box ENTRY_ID for NAME."""
    store = obj['store']
    result = ClaimArbiter(store).claim(entry_id, name)
    if not result:
        raise click.ClickException(f'Claim failed: {result.reason.value}. The box may be taken or you already own one.')
    entry = next((e for e in result.snapshot.catalog if e.id == entry_id), None)
    click.echo(f'{name} opened {entry_id}')
    if entry is not None:
        click.echo(f'{entry.name} [{entry.category}] {entry.hint}')


@main.command()
@click.option('--seconds', type=float, default=None, help='Stop after this many seconds.')
@click.pass_obj
def watch(obj, seconds):
    """Follow the room until interrupted."""
    store = obj['store']
    store.add_listener(lambda session, catalog: click.echo(describe(session, catalog)))
    deadline = time.time() + seconds if seconds is not None else None
    with store:
        try:
            while deadline is None or time.time() < deadline:
                time.sleep(0.2)
        except KeyboardInterrupt:
            pass
