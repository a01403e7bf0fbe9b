"""CLI entrypoint: Typer app definition and command registration"""

from typing import Annotated

import typer

from sitepub.cli.commands import (
    build_cmd, deploy_cmd, fetch_cmd, history_cmd, package_cmd, publish_cmd, rollback_cmd,
)
from sitepub.logging_setup import configure_logging


app = typer.Typer(name="sitepub", no_args_is_help=True, help="Static site build-and-publish pipeline")


@app.callback()
def main(verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False):
    configure_logging(verbose)


app.command(name="fetch")(fetch_cmd)
app.command(name="build")(build_cmd)
app.command(name="package")(package_cmd)
app.command(name="publish")(publish_cmd)
app.command(name="deploy")(deploy_cmd)
app.command(name="rollback")(rollback_cmd)
app.command(name="history")(history_cmd)
