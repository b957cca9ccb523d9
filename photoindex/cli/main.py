"""
photoindex command line interface

Exposes duplicate detection, search and the deletion lifecycle over the
configured photo store.
"""

import logging
from pathlib import Path
from typing import List, Optional

import click
from PIL import Image, UnidentifiedImageError
from tqdm import tqdm

from .. import __version__
from ..analysis.similarity import DuplicateManager, QualityScorer, compute_file_hashes
from ..config import load_config
from ..db import GroupType, PhotoRecord, PhotoStore, SqlPhotoStore, create_store
from ..exceptions import InvalidInputError, PhotoIndexError
from ..search import SemanticSearchEngine
from ..trash import DeletionLifecycleManager
from ..utils.logging import setup_logging_from_config

logger = logging.getLogger(__name__)


class PhotoIndexGroup(click.Group):
    """click group that reports PhotoIndexError as a clean CLI error"""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except PhotoIndexError as e:
            raise click.ClickException(str(e)) from e


class AppContext:
    """Configuration plus lazily built services shared by all commands"""

    def __init__(self, config):
        self.config = config
        self._store: Optional[PhotoStore] = None

    @property
    def store(self) -> PhotoStore:
        if self._store is None:
            self._store = create_store(self.config)
        return self._store

    def duplicates(self) -> DuplicateManager:
        return DuplicateManager(self.store, self.config)

    def search_engine(self) -> SemanticSearchEngine:
        return SemanticSearchEngine(self.store, self.config)

    def lifecycle(self) -> DeletionLifecycleManager:
        return DeletionLifecycleManager(self.store, self.config)


pass_app = click.make_pass_decorator(AppContext)


def parse_vector(text: str) -> List[float]:
    """Parse a comma separated list of floats"""
    try:
        return [float(part) for part in text.split(',') if part.strip()]
    except ValueError as e:
        raise InvalidInputError(f"Invalid vector {text!r}: {e}") from e


def format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ('B', 'KB', 'MB'):
        if size < 1024:
            return f"{int(size)} B" if unit == 'B' else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def read_dimensions(path: Path):
    try:
        with Image.open(path) as image:
            return image.size
    except (UnidentifiedImageError, OSError):
        return None, None


@click.group(cls=PhotoIndexGroup)
@click.version_option(__version__, prog_name='photoindex')
@click.option('--config', '-c', 'config_path', type=click.Path(dir_okay=False),
              help='Path to configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--quiet', '-q', is_flag=True, help='Only log warnings and errors')
@click.pass_context
def cli(ctx, config_path, verbose, quiet):
    """photoindex - duplicate detection, search and safe deletion for photo libraries"""
    config = load_config(Path(config_path) if config_path else None)
    level = 'DEBUG' if verbose else 'WARNING' if quiet else None
    setup_logging_from_config(config, level=level)
    ctx.obj = AppContext(config)


# === Index ===

@cli.command('init-db')
@pass_app
def init_db(app):
    """Create the database schema"""
    store = app.store
    if isinstance(store, SqlPhotoStore):
        store.database.init_schema()
        click.echo(f"Database ready: {store.database.url}")
    else:
        click.echo("In-memory store needs no initialisation")


@cli.command()
@click.argument('paths', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--hash/--no-hash', 'compute_hashes', default=True, help='Compute content and perceptual hashes')
@click.option('--description', '-d', help='Description to store with the photo')
@pass_app
def add(app, paths, compute_hashes, description):
    """Add image files to the index"""
    hash_size = app.config.get('similarity', {}).get('hash_size', 16)
    for raw_path in paths:
        path = Path(raw_path).resolve()
        width, height = read_dimensions(path)
        record = PhotoRecord(
            id=None,
            path=str(path),
            filename=path.name,
            size_bytes=path.stat().st_size,
            width=width,
            height=height,
            description=description,
        )
        if compute_hashes:
            hashes = compute_file_hashes(path, hash_size=hash_size)
            record.sha256_hash = hashes.sha256
            record.perceptual_hash = hashes.perceptual
        photo = app.store.add_photo(record)
        click.echo(f"Added photo {photo.id}: {photo.path}")


@cli.command('hash')
@click.option('--all', 'rehash_all', is_flag=True, help='Recompute hashes for every photo')
@pass_app
def hash_photos(app, rehash_all):
    """Compute missing content and perceptual hashes"""
    store = app.store
    photos = store.query_photos(trashed=False) if rehash_all else store.query_photos(has_sha256=False, trashed=False)
    if not photos:
        click.echo("No photos need hashing")
        return

    hash_size = app.config.get('similarity', {}).get('hash_size', 16)
    hashed = failed = 0
    for photo in tqdm(photos, desc="Hashing", unit="photo", disable=len(photos) < 2):
        try:
            hashes = compute_file_hashes(photo.path, hash_size=hash_size)
        except OSError as e:
            logger.warning(f"Cannot hash photo {photo.id} ({photo.path}): {e}")
            failed += 1
            continue
        store.update_hashes(photo.id, hashes.sha256, hashes.perceptual)
        hashed += 1
    click.echo(f"Hashed {hashed} photos, {failed} failed")


@cli.command()
@click.argument('photo_id', type=int)
@click.argument('text')
@pass_app
def describe(app, photo_id, text):
    """Store a description used by text search"""
    app.store.set_description(photo_id, text)
    click.echo(f"Description saved for photo {photo_id}")


@cli.command()
@click.argument('photo_id', type=int)
@click.option('--vector', required=True, help='Comma separated embedding values')
@click.option('--model', 'model_name', help='Embedding model name (defaults to search.model_name)')
@pass_app
def embed(app, photo_id, vector, model_name):
    """Store an embedding for a photo"""
    model_name = model_name or app.config.get('search', {}).get('model_name', 'default')
    record = app.store.put_embedding(photo_id, parse_vector(vector), model_name)
    click.echo(f"Stored {record.dimension}-d {model_name} embedding for photo {photo_id}")


# === Duplicates ===

@cli.group()
def duplicates():
    """Duplicate detection commands"""
    pass


def echo_groups(store: PhotoStore, groups) -> None:
    scorer = QualityScorer()
    for group in groups:
        click.echo(f"Group {group.id} ({group.group_type.value}, {len(group.members)} photos)")
        photos = {p.id: p for p in store.get_photos(group.photo_ids)}
        for member in group.members:
            photo = photos.get(member.photo_id)
            keep = '*' if member.is_representative else ' '
            distance = '' if member.similarity_score is None else f" distance={member.similarity_score:g}"
            if photo is None:
                click.echo(f"  {keep} {member.photo_id}: <missing>")
                continue
            click.echo(f"  {keep} {photo.id}: {photo.path} "
                       f"[{photo.width or '?'}x{photo.height or '?'}, {format_size(photo.size_bytes or 0)}, "
                       f"score={scorer.display_score(photo)}]{distance}")


def echo_report(store: PhotoStore, report) -> None:
    echo_groups(store, report.groups)
    for skip in report.skipped:
        click.echo(f"Skipped photo {skip.photo_id}: {skip.reason}", err=True)
    click.echo(f"Found {len(report.groups)} {report.group_type.value} groups "
               f"covering {report.photos_grouped} photos")


@duplicates.command('exact')
@pass_app
def duplicates_exact(app):
    """Group photos with identical content"""
    echo_report(app.store, app.duplicates().detect_exact())


@duplicates.command('perceptual')
@click.option('--threshold', '-t', type=int, help='Maximum Hamming distance (default from config)')
@pass_app
def duplicates_perceptual(app, threshold):
    """Group visually similar photos"""
    echo_report(app.store, app.duplicates().detect_perceptual(threshold))


@duplicates.command('list')
@click.option('--type', 'group_type', type=click.Choice([t.value for t in GroupType]),
              help='Only list groups of this type')
@pass_app
def duplicates_list(app, group_type):
    """Show stored duplicate groups"""
    groups = app.duplicates().list_groups(GroupType(group_type) if group_type else None)
    if not groups:
        click.echo("No duplicate groups stored")
        return
    echo_groups(app.store, groups)


@duplicates.command('auto-select')
@click.argument('group_ids', nargs=-1, type=int)
@click.option('--all', 'all_groups', is_flag=True, help='Apply to every stored group')
@pass_app
def duplicates_auto_select(app, group_ids, all_groups):
    """Mark every photo except the representative for deletion"""
    manager = app.duplicates()
    if all_groups:
        group_ids = [g.id for g in manager.list_groups()]
    if not group_ids:
        raise click.UsageError("Give one or more GROUP_IDS or --all")
    total = 0
    for group_id in group_ids:
        marked = manager.mark_non_representatives(group_id)
        total += len(marked)
        if marked:
            click.echo(f"Group {group_id}: marked {', '.join(str(i) for i in marked)}")
    click.echo(f"Marked {total} photos for deletion")


@duplicates.command('stats')
@pass_app
def duplicates_stats(app):
    """Summarise stored duplicate groups"""
    stats = app.duplicates().get_duplicate_statistics()
    click.echo(f"Groups: {stats['groups']}")
    click.echo(f"Photos in groups: {stats['photos_in_groups']}")
    click.echo(f"Duplicates: {stats['duplicates']}")
    click.echo(f"Reclaimable: {format_size(stats['reclaimable_bytes'])}")


# === Search ===

@cli.group()
def search():
    """Search commands"""
    pass


def echo_results(report) -> None:
    if not report.results:
        click.echo("No matches")
    for result in report.results:
        score = '' if result.similarity is None else f"{result.similarity:.4f} "
        click.echo(f"{score}{result.photo_id}: {result.path}")
        if result.description:
            click.echo(f"    {result.description}")
    for skip in report.skipped:
        click.echo(f"Skipped photo {skip.photo_id}: {skip.reason}", err=True)


@search.command('text')
@click.argument('query')
@click.option('--limit', '-n', type=int, help='Maximum number of results')
@pass_app
def search_text(app, query, limit):
    """Keyword search over photo descriptions"""
    echo_results(app.search_engine().search_text(query, limit))


@search.command('vector')
@click.option('--vector', help='Comma separated query embedding')
@click.option('--like', 'like_photo', type=int, help='Use the stored embedding of this photo as the query')
@click.option('--model', 'model_name', help='Embedding model name')
@click.option('--limit', '-n', type=int, help='Maximum number of results')
@click.option('--min-similarity', type=float, help='Drop results below this cosine similarity')
@pass_app
def search_vector(app, vector, like_photo, model_name, limit, min_similarity):
    """Rank photos by cosine similarity to an embedding"""
    engine = app.search_engine()
    model_name = model_name or engine.model_name
    if (vector is None) == (like_photo is None):
        raise click.UsageError("Give exactly one of --vector or --like")
    if vector is not None:
        query = parse_vector(vector)
    else:
        record = app.store.get_embedding(like_photo, model_name)
        if record is None:
            raise click.ClickException(f"Photo {like_photo} has no {model_name} embedding")
        query = record.vector()
    echo_results(engine.search(query, model_name, limit, min_similarity))


# === Deletion lifecycle ===

@cli.command()
@click.argument('photo_ids', nargs=-1, type=int, required=True)
@pass_app
def mark(app, photo_ids):
    """Mark photos for deletion"""
    lifecycle = app.lifecycle()
    for photo_id in photo_ids:
        lifecycle.mark_for_deletion(photo_id)
    click.echo(f"Marked {len(photo_ids)} photos for deletion")


@cli.command()
@click.argument('photo_ids', nargs=-1, type=int, required=True)
@pass_app
def unmark(app, photo_ids):
    """Clear the deletion mark"""
    lifecycle = app.lifecycle()
    for photo_id in photo_ids:
        lifecycle.unmark_for_deletion(photo_id)
    click.echo(f"Unmarked {len(photo_ids)} photos")


@cli.command()
@click.argument('photo_ids', nargs=-1, type=int)
@click.option('--marked', 'all_marked', is_flag=True, help='Trash every photo marked for deletion')
@click.option('--record-only', is_flag=True, help='Update the index without moving files')
@click.option('--trash-path', help='With --record-only, the path the file was moved to')
@pass_app
def trash(app, photo_ids, all_marked, record_only, trash_path):
    """Move photos to the trash"""
    if record_only and not trash_path:
        raise click.UsageError("--record-only needs --trash-path")
    lifecycle = app.lifecycle()
    if all_marked:
        photo_ids = [p.id for p in lifecycle.list_marked_not_trashed()]
    if not photo_ids:
        click.echo("Nothing to trash")
        return
    for photo_id in photo_ids:
        if record_only:
            photo = lifecycle.trash(photo_id, trash_path)
        else:
            photo = lifecycle.trash_file(photo_id)
        click.echo(f"Trashed photo {photo_id}: {photo.path}")


@cli.command()
@click.argument('photo_ids', nargs=-1, type=int, required=True)
@click.option('--record-only', is_flag=True, help='Update the index without moving files')
@pass_app
def restore(app, photo_ids, record_only):
    """Restore trashed photos to their original location"""
    lifecycle = app.lifecycle()
    for photo_id in photo_ids:
        path = lifecycle.restore(photo_id) if record_only else lifecycle.restore_file(photo_id)
        click.echo(f"Restored photo {photo_id}: {path}")


@cli.command()
@click.argument('photo_ids', nargs=-1, type=int, required=True)
@click.option('--keep-file', is_flag=True, help='Only remove the index record')
@click.confirmation_option(prompt='Permanently delete these photos?')
@pass_app
def purge(app, photo_ids, keep_file):
    """Permanently delete photos"""
    lifecycle = app.lifecycle()
    for photo_id in photo_ids:
        photo = app.store.require_photo(photo_id)
        if photo.is_trashed and not keep_file:
            lifecycle.purge_file(photo_id)
        else:
            lifecycle.purge(photo_id)
        click.echo(f"Purged photo {photo_id}")


@cli.command('trash-list')
@pass_app
def trash_list(app):
    """List trashed photos, newest first"""
    trashed = app.lifecycle().list_trashed()
    if not trashed:
        click.echo("Trash is empty")
        return
    for photo in trashed:
        click.echo(f"{photo.id}: {photo.original_path} "
                   f"(trashed {photo.trashed_at:%Y-%m-%d %H:%M}, {format_size(photo.size_bytes)})")


@cli.command('trash-size')
@pass_app
def trash_size(app):
    """Show trash usage against its limit"""
    usage = app.lifecycle().trash_usage()
    click.echo(f"Trash: {format_size(usage.total_bytes)} of {format_size(usage.max_bytes)} "
               f"({usage.percentage:.1f}%)")
    if usage.over_limit:
        click.echo("Trash is over its size limit", err=True)


@cli.command('trash-cleanup')
@click.option('--max-age-days', type=int, help='Purge photos trashed longer ago than this (default from config)')
@click.option('--dry-run', is_flag=True, help='Only list what would be purged')
@pass_app
def trash_cleanup(app, max_age_days, dry_run):
    """Permanently delete photos that have been in the trash too long"""
    lifecycle = app.lifecycle()
    if dry_run:
        old = lifecycle.old_trashed(max_age_days)
        for photo in old:
            click.echo(f"{photo.id}: {photo.original_path} (trashed {photo.trashed_at:%Y-%m-%d})")
        click.echo(f"{len(old)} photos would be purged")
        return
    result = lifecycle.cleanup_old(max_age_days)
    for skip in result.skipped:
        click.echo(f"Skipped photo {skip.photo_id}: {skip.reason}", err=True)
    click.echo(f"Purged {result.records_purged} photos, deleted {result.files_deleted} files, "
               f"freed {format_size(result.bytes_freed)}")


def main():
    """Console script entry point"""
    cli(prog_name='photoindex', auto_envvar_prefix='PHOTOINDEX')


if __name__ == '__main__':
    main()
