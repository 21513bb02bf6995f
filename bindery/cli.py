"""Command line entry point for Bindery."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from bindery.dependencies import get_send_pipeline, get_settings
from bindery.logging_config import configure_application_logging
from bindery.services.conversation_service import validate_email
from bindery.services.cover_renderer import render_cover
from bindery.services.delivery import SmtpDelivery
from bindery.services.errors import AllUrlsFailedError, BinderyError

console = Console()


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """Bindery - turn web articles into Kindle ebooks."""
    configure_application_logging(get_settings())


@click.command()
@click.argument("url")
def extract(url: str) -> None:
    """Show what would be extracted from URL."""
    try:
        article = get_send_pipeline().prepare_article(url)
    except BinderyError as exc:
        console.print(f"[red]Extraction failed:[/red] {exc}")
        sys.exit(1)

    table = Table(show_header=False)
    table.add_row("Title", article.title)
    table.add_row("Byline", article.byline or "-")
    table.add_row("Site", article.site_name or "-")
    table.add_row("Excerpt", article.excerpt or "-")
    table.add_row("Content", f"{len(article.content_html)} characters of HTML")
    console.print(table)


@click.command()
@click.argument("urls", nargs=-1, required=True)
@click.option("--email", "email", required=True, help="Kindle address to deliver to.")
@click.option("--title", default=None, help="Book title (defaults to the article title).")
@click.option("--author", default=None, help="Book author (defaults to the byline).")
def send(urls: tuple[str, ...], email: str, title: str | None, author: str | None) -> None:
    """Bind URLS into one EPUB and mail it."""
    try:
        to_address = validate_email(email)
        result = get_send_pipeline().send(list(urls), to_address=to_address, title=title, author=author)
    except AllUrlsFailedError as exc:
        console.print(f"[red]{exc}[/red]")
        for failed_url in exc.failed_urls:
            console.print(f"  [dim]{failed_url}[/dim]")
        sys.exit(1)
    except BinderyError as exc:
        console.print(f"[red]Send failed:[/red] {exc}")
        sys.exit(1)

    console.print(
        f"[green]Sent[/green] {result.attachment_filename} "
        f"({result.chapter_count} chapters, {result.size_bytes / 1024:.0f} KiB)"
    )
    if result.failed_urls:
        console.print(f"[yellow]{len(result.failed_urls)} URL(s) were skipped:[/yellow]")
        for failed_url in result.failed_urls:
            console.print(f"  [dim]{failed_url}[/dim]")


@click.command()
@click.argument("title")
@click.argument("author")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("cover.jpg"),
    show_default=True,
)
def cover(title: str, author: str, output: Path) -> None:
    """Render a cover image for TITLE and AUTHOR."""
    output.write_bytes(render_cover(title, author))
    console.print(f"[green]Cover written:[/green] {output}")


@click.command(name="check-smtp")
def check_smtp() -> None:
    """Verify the configured SMTP credentials."""
    settings = get_settings()
    delivery = SmtpDelivery(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        from_address=settings.smtp_from,
        timeout_seconds=settings.smtp_timeout_seconds,
    )
    if not delivery.configured:
        console.print("[red]SMTP is not configured.[/red] Set BINDERY_SMTP_HOST and BINDERY_SMTP_FROM.")
        sys.exit(1)
    if not delivery.verify():
        console.print(f"[red]Could not log in to {settings.smtp_host}:{settings.smtp_port}[/red]")
        sys.exit(1)
    console.print(f"[green]SMTP ready:[/green] {settings.smtp_host}:{settings.smtp_port}")


main.add_command(extract)
main.add_command(send)
main.add_command(cover)
main.add_command(check_smtp)


if __name__ == "__main__":
    main()
