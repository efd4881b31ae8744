"""CLI for ridemetrics."""

import json
from typing import Annotated, Any

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from ridemetrics.catalog.vehicle_categories import all_service_tiers, get_service_tiers_by_category, get_vehicle_category
from ridemetrics.config import load_settings
from ridemetrics.models.filters import Filters, SortOptions
from ridemetrics.store import REPORTS, RideMetricsStore

app = typer.Typer(
    name="ridemetrics",
    help="ridemetrics - ride-hailing dashboard queries over ClickHouse",
    no_args_is_help=True,
)
console = Console()


def get_store() -> RideMetricsStore:
    return RideMetricsStore.from_settings(load_settings())


# shared filter options; typer has no option groups so they are repeated per command
DateFromOpt = Annotated[str | None, typer.Option("--from", help="Start date (YYYY-MM-DD)")]
DateToOpt = Annotated[str | None, typer.Option("--to", help="End date (YYYY-MM-DD)")]
CityOpt = Annotated[str | None, typer.Option("--city", "-c", help="Comma-separated cities")]
FlowTypeOpt = Annotated[str | None, typer.Option("--flow-type", help="Comma-separated flow types")]
TripTagOpt = Annotated[str | None, typer.Option("--trip-tag", help="Comma-separated trip tags")]
TierOpt = Annotated[str | None, typer.Option("--service-tier", help="Comma-separated service tiers")]
CategoryOpt = Annotated[str | None, typer.Option("--vehicle-category", help="Auto, Cab, Bike, Others, All, BookAny")]
GranularityOpt = Annotated[str | None, typer.Option("--granularity", "-t", help="day or hour")]
GroupByOpt = Annotated[str | None, typer.Option("--group-by", "-g", help="Grouping column")]
DimensionOpt = Annotated[str | None, typer.Option("--dimension", "-d", help="Trend / breakdown dimension")]
SortByOpt = Annotated[str | None, typer.Option("--sort-by", help="Output column to sort by")]
DescOpt = Annotated[bool, typer.Option("--desc", help="Sort descending")]


def _build_filters(**values: Any) -> Filters:
    return Filters.model_validate({k: v for k, v in values.items() if v is not None})


def _options(granularity, group_by, dimension, sort_by, desc) -> dict[str, Any]:
    sort = SortOptions(sort_by=sort_by, sort_order="desc" if desc else "asc") if sort_by else None
    return {"granularity": granularity, "group_by": group_by, "dimension": dimension, "sort": sort}


def _check_report(report: str) -> None:
    if report not in REPORTS:
        console.print(f"[red]Unknown report: {report}. Use: {', '.join(REPORTS)}[/red]")
        raise typer.Exit(1)


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "0.0.0.0",
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port (default: PORT env)")] = None,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from ridemetrics.api.app import create_app

    settings = load_settings()
    uvicorn.run(create_app(settings), host=host, port=port or settings.port)


@app.command("show-sql")
def show_sql(
    report: Annotated[str, typer.Argument(help="Report name, e.g. executive, master-trend")],
    date_from: DateFromOpt = None,
    date_to: DateToOpt = None,
    city: CityOpt = None,
    flow_type: FlowTypeOpt = None,
    trip_tag: TripTagOpt = None,
    service_tier: TierOpt = None,
    vehicle_category: CategoryOpt = None,
    granularity: GranularityOpt = None,
    group_by: GroupByOpt = None,
    dimension: DimensionOpt = None,
    sort_by: SortByOpt = None,
    desc: DescOpt = False,
) -> None:
    """Show the generated SQL and its bound parameters without executing."""
    _check_report(report)
    try:
        store = get_store()
        filters = _build_filters(
            date_from=date_from,
            date_to=date_to,
            city=city,
            flow_type=flow_type,
            trip_tag=trip_tag,
            service_tier=service_tier,
            vehicle_category=vehicle_category,
        )
        query = store.get_sql(report, filters, **_options(granularity, group_by, dimension, sort_by, desc))
    except Exception as e:
        console.print(f"[red]Error generating SQL: {e}[/red]")
        raise typer.Exit(1)

    console.print(Syntax(query.pretty(), "sql", theme="monokai", line_numbers=True))
    if query.params:
        console.print()
        console.print(json.dumps(query.params, indent=2, default=str))


@app.command()
def query(
    report: Annotated[str, typer.Argument(help="Report name, e.g. executive, master-trend")],
    date_from: DateFromOpt = None,
    date_to: DateToOpt = None,
    city: CityOpt = None,
    flow_type: FlowTypeOpt = None,
    trip_tag: TripTagOpt = None,
    service_tier: TierOpt = None,
    vehicle_category: CategoryOpt = None,
    granularity: GranularityOpt = None,
    group_by: GroupByOpt = None,
    dimension: DimensionOpt = None,
    sort_by: SortByOpt = None,
    desc: DescOpt = False,
    output: Annotated[str, typer.Option("--output", "-o", help="Output format: table, json")] = "table",
) -> None:
    """Run a report against the warehouse."""
    _check_report(report)
    try:
        filters = _build_filters(
            date_from=date_from,
            date_to=date_to,
            city=city,
            flow_type=flow_type,
            trip_tag=trip_tag,
            service_tier=service_tier,
            vehicle_category=vehicle_category,
        )
        with get_store() as store:
            result = store.run(report, filters, **_options(granularity, group_by, dimension, sort_by, desc))
    except Exception as e:
        console.print(f"[red]Query error: {e}[/red]")
        raise typer.Exit(1)

    _output_result(report, _to_rows(result), output)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def _to_rows(result: Any) -> list[dict[str, Any]]:
    """Flatten whatever a report returns into a list of json-ready dicts."""
    if isinstance(result, tuple):
        # master executive: (totals, tier type)
        totals, tier_type = result
        return [{**_dump(totals), "tierType": tier_type}]
    if isinstance(result, list):
        return [_dump(item) for item in result]
    return [_dump(result)]


def _output_result(report: str, rows: list[dict[str, Any]], output_format: str) -> None:
    if output_format == "json":
        console.print(json.dumps(rows, indent=2, default=str))
        return

    if not rows:
        console.print("[yellow]No rows[/yellow]")
        return

    table = Table(title=f"{report} ({len(rows)} rows)")
    columns = list(rows[0])
    for col in columns:
        table.add_column(col)
    for row in rows:
        values = [_cell(row.get(c, "")) for c in columns]
        table.add_row(*values)
    console.print(table)


def _cell(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


@app.command()
def check() -> None:
    """Verify the warehouse is reachable."""
    try:
        store = get_store()
    except Exception as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    ok = store.ping()
    store.close()
    if not ok:
        console.print(f"[red]ClickHouse at {store.executor.host}:{store.executor.port} is not reachable[/red]")
        raise typer.Exit(1)
    console.print(f"[green]ClickHouse at {store.executor.host}:{store.executor.port} is reachable[/green]")


@app.command()
def tiers(
    category: Annotated[str | None, typer.Argument(help="Only list tiers of this vehicle category")] = None,
) -> None:
    """List known service tiers and the vehicle category each maps to."""
    if category:
        try:
            names = get_service_tiers_by_category(category)
        except ValueError:
            console.print(f"[red]Unknown vehicle category: {category}[/red]")
            raise typer.Exit(1)
    else:
        names = all_service_tiers()

    table = Table(title="Service tiers")
    table.add_column("Service tier", style="cyan")
    table.add_column("Vehicle category", style="green")
    for name in names:
        table.add_row(name, get_vehicle_category(name).value)
    console.print(table)


if __name__ == "__main__":
    app()
