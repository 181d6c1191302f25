#!/usr/bin/env python3
"""
Command-line interface for cluster provisioning.

    pvecluster plan --preset k8s      # Show what would be declared
    pvecluster apply --preset k8s     # Provision on Proxmox
    pvecluster render worker1         # Print a node's cloud-init
    pvecluster mac --count 3          # Generate MAC addresses
"""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from pvecluster.config import PRESETS, ClusterConfig, load_preset
from pvecluster.engine import RecordingEngine
from pvecluster.errors import ProvisioningError
from pvecluster.mac import derive_mac, generate_mac
from pvecluster.orchestrator import ProvisioningOrchestrator
from pvecluster.proxmox_engine import ProxmoxEngine
from pvecluster.session import ProxmoxSession

# Initialize CLI app and console
app = typer.Typer(
    name="pvecluster",
    help="Declarative Proxmox cluster provisioning",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = Path("cloud-init") / "cloud-init.yml"


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
    )


def _load_config(preset: str, config_file: Optional[Path]) -> ClusterConfig:
    if config_file is not None:
        return ClusterConfig.from_yaml(config_file)
    return load_preset(preset)


PresetOption = typer.Option("k8s", "--preset", "-p", help=f"Built-in cluster ({', '.join(sorted(PRESETS))})")
ConfigOption = typer.Option(None, "--config", "-c", help="Cluster configuration YAML (overrides --preset)")
TemplateOption = typer.Option(DEFAULT_TEMPLATE, "--template", "-t", help="Shared cloud-init template")


@app.command("plan")
def show_plan(
    preset: str = PresetOption,
    config_file: Optional[Path] = ConfigOption,
    template: Path = TemplateOption,
) -> None:
    """Build the plan without touching Proxmox and show it in dependency order."""
    try:
        config = _load_config(preset, config_file)
        engine = RecordingEngine()
        orchestrator = ProvisioningOrchestrator(config, engine, template_path=template, container_password="<redacted>")
        plan = orchestrator.build_plan()
        plan.validate()
        order = plan.topological_order()
    except ProvisioningError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Plan: {config.name}")
    table.add_column("#", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Resource", style="blue")
    table.add_column("Depends on", style="yellow")
    table.add_column("Identity", style="green")
    for idx, decl in enumerate(order, 1):
        identity = orchestrator.identities.get(decl.spec.node_name or "") if decl.kind.is_compute else None
        table.add_row(
            str(idx),
            decl.kind.value,
            decl.name,
            ", ".join(decl.depends_on) or "-",
            identity.mac_address if identity else "",
        )
    console.print(table)
    console.print(f"{len(plan)} resources, {len(plan.compute_resources())} compute")


@app.command("apply")
def apply_plan(
    preset: str = PresetOption,
    config_file: Optional[Path] = ConfigOption,
    template: Path = TemplateOption,
    output_json: bool = typer.Option(False, "--json", help="Print exported results as JSON"),
) -> None:
    """Provision the cluster on Proxmox and print exported identifiers."""
    try:
        config = _load_config(preset, config_file)
        needs_password = any(node.is_container for node in config.nodes)
        session = ProxmoxSession.from_environment(require_container_password=needs_password)
        engine = ProxmoxEngine(session.connect(), session)
        orchestrator = ProvisioningOrchestrator(
            config, engine, template_path=template, container_password=session.container_password
        )
        results = orchestrator.run()
    except ProvisioningError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    if output_json:
        console.print_json(json.dumps({name: result.to_dict() for name, result in results.items()}))
        return

    table = Table(title=f"Provisioned: {config.name}")
    table.add_column("Node", style="cyan")
    table.add_column("Resource ID", style="blue")
    table.add_column("IPv4", style="green")
    for name, result in results.items():
        table.add_row(name, result.resource_id, ", ".join(result.ipv4_addresses or []) or "-")
    console.print(table)


@app.command("render")
def render_node(
    node: str = typer.Argument(..., help="Node name"),
    preset: str = PresetOption,
    config_file: Optional[Path] = ConfigOption,
    template: Path = TemplateOption,
) -> None:
    """Print the rendered cloud-init document of one node."""
    try:
        config = _load_config(preset, config_file)
        spec = next((n for n in config.nodes if n.name == node), None)
        if spec is None:
            console.print(f"[red]❌ Unknown node {node!r}[/red]")
            raise typer.Exit(1)
        orchestrator = ProvisioningOrchestrator(config, RecordingEngine(), template_path=template)
        document = orchestrator.render_for(spec, orchestrator.identity_for(spec))
    except ProvisioningError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)
    typer.echo(document.rendered_content, nl=False)


@app.command("mac")
def mac_addresses(
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of addresses"),
    seed: Optional[str] = typer.Option(None, "--seed", help="Derive a stable address from this seed"),
) -> None:
    """Generate locally-administered MAC addresses."""
    try:
        if seed is not None:
            macs = [derive_mac(seed if count == 1 else f"{seed}/{i}") for i in range(count)]
        else:
            macs = [generate_mac() for _ in range(count)]
    except ProvisioningError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)
    for mac in macs:
        typer.echo(mac)


if __name__ == "__main__":
    app()
