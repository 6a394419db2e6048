# archstrap/cli.py
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer

from archstrap import chroot_install, core
from archstrap.config import InstallerConfig, template_text
from archstrap.install.context import MOUNT_ROOT, InstallContext
from archstrap.install.pipeline import run_pipeline
from archstrap.install.steps import InstallStep, InstallStepRange
from archstrap.live_cd import build_live_cd
from archstrap.utils.exceptions import InstallerError, UserDeclinedError
from archstrap.utils.executor import Executor, ShellCommandError
from archstrap.utils.logger import initialize_app_logger
from archstrap.utils.system import default_config_path

STEPS_HELP = "Installation step to run, or an inclusive range: [step] | [from]..[to]. Steps: " + \
    ", ".join(step.label for step in InstallStep)

app = typer.Typer(
    name="archstrap",
    help="Arch Linux installation program.",
    add_completion=False,
    no_args_is_help=True,
)


class State:
    config_path: Path = default_config_path()


state = State()


@contextmanager
def reported_errors():
    """Turns installer failures into a one-line message and an exit status."""
    try:
        yield
    except UserDeclinedError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=0)
    except (InstallerError, ShellCommandError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


def load_config(validate: bool = True) -> InstallerConfig:
    config = InstallerConfig.load_config_from_file(state.config_path)
    if validate:
        config.validate_settings()
    return config


def make_executor() -> Executor:
    return Executor(logger_instance=core.get_logger(), chroot_path=str(MOUNT_ROOT))


@app.callback()
def main_callback(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", metavar="FILE",
        help="Location of the config file (default: config.toml next to the installer).",
    ),
    debug: bool = typer.Option(False, "--debug", help="Show debug messages on the console."),
):
    """
    Arch Linux installation program.
    """
    state.config_path = config if config is not None else default_config_path()
    core.app_logger = initialize_app_logger(
        app_name="archstrap",
        console_log_level=logging.DEBUG if debug else logging.INFO,
    )


@app.command("mkconfig")
def mkconfig(
    output: Path = typer.Option(Path("config.toml"), "--output", "-o", help="Where to write the template."),
):
    """Emits the config template."""
    output.write_text(template_text(), encoding="utf-8")
    core.get_logger().info(f"Config template written to {output}.")


@app.command("archiso")
def archiso(
    working_dir: Path = typer.Option(..., "--working-dir", metavar="PATH", help="Location of the build directory."),
):
    """Builds the live CD."""
    with reported_errors():
        config = load_config(validate=False)
        build_live_cd(config, working_dir, make_executor(), core.get_logger())


@app.command("install")
def install(
    steps: str = typer.Option("..", "--steps", metavar="RANGE", help=STEPS_HELP),
):
    """Begins the installation."""
    with reported_errors():
        step_range = InstallStepRange.parse(steps)
        config = load_config()

        logger = core.get_logger()
        logger.info(config.display_summary())
        for step in InstallStep:
            logger.debug(f"{step.label}: {step_range.contains(step)}")

        ctx = InstallContext.build(config, make_executor(), logger, state.config_path)
        run_pipeline(ctx, step_range)
        logger.info("Installation finished.")


@app.command("chroot-install")
def chroot_install_command():
    """Continues the installation inside the new root."""
    with reported_errors():
        config = load_config()
        logger = core.get_logger()
        ctx = InstallContext.build(config, make_executor(), logger, state.config_path)
        chroot_install.run(ctx)
        logger.info("Configuration of the new system finished.")


def main():
    app()
