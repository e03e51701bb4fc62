"""CLI for the smartwake alarm engine."""

import asyncio
from datetime import date, datetime, time, timedelta, timezone

import click

SENSITIVITIES = ["conservative", "balanced", "sensitive"]


def _tz(utc_offset: float) -> timezone:
    return timezone(timedelta(hours=utc_offset))


def _settings(wake: str, window: int, sensitivity: str, enabled: bool = True):
    from smartwake.exceptions import InvalidScheduleError
    from smartwake.models import parse_wake_time
    from smartwake.store import SetupSettings

    try:
        wake_time = parse_wake_time(wake)
        return SetupSettings(
            wake_hour=wake_time.hour,
            wake_minute=wake_time.minute,
            window_minutes=window,
            sensitivity=sensitivity,
            enabled=enabled,
        )
    except InvalidScheduleError as e:
        raise click.BadParameter(str(e)) from None


def _schedule_options(f):
    f = click.option("--utc-offset", default=0.0, help="Local timezone offset from UTC in hours.")(f)
    f = click.option("--sensitivity", "-s", type=click.Choice(SENSITIVITIES), default="balanced",
                     help="Smart-trigger sensitivity.")(f)
    f = click.option("--window", "-w", default=30, help="Wake window length in minutes.")(f)
    f = click.option("--wake", default="07:30", help="Target wake time, HH:mm.")(f)
    return f


@click.group()
def main() -> None:
    """smartwake: wake inside a window at the lightest moment."""


@main.command()
@_schedule_options
@click.option("--date", "on_date", default=None, help="Effective date YYYY-MM-DD (default today).")
@click.option("--at", "at_time", required=True, help="Local time to evaluate, HH:MM[:SS].")
def phase(wake: str, window: int, sensitivity: str, utc_offset: float,
          on_date: str | None, at_time: str) -> None:
    """Print the session phase of a schedule at a given time."""
    from smartwake.arming import derive_phase
    from smartwake.models import SessionWindow

    tz = _tz(utc_offset)
    effective = date.fromisoformat(on_date) if on_date else datetime.now(tz).date()
    try:
        at = datetime.combine(effective, time.fromisoformat(at_time), tzinfo=tz)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--at") from None

    schedule = _settings(wake, window, sensitivity).to_schedule()
    session_window = SessionWindow.from_schedule(schedule, effective, tz)
    click.echo(f"Arm:    {session_window.window_arm_time.isoformat()}")
    click.echo(f"Start:  {session_window.window_start_time.isoformat()}")
    click.echo(f"Target: {session_window.target_wake_time.isoformat()}")
    click.echo(f"Phase at {at.isoformat()}: {derive_phase(session_window, at).value}")


@main.command()
@_schedule_options
@click.option("--date", "on_date", default="2026-01-19", help="Effective date YYYY-MM-DD.")
@click.option("--wake-after", default=None, type=float,
              help="Minutes into the window when the sleeper starts waking (default: never).")
@click.option("--snooze", "snoozes", default=0, help="Number of snoozes before dismissing.")
@click.option("--motion-hz", default=25.0, help="Simulated accelerometer rate.")
@click.option("--no-heart-rate", is_flag=True, help="Simulate an unavailable heart-rate sensor.")
@click.option("--seed", default=0, help="Random seed for the simulated sensors.")
def simulate(wake: str, window: int, sensitivity: str, utc_offset: float, on_date: str,
             wake_after: float | None, snoozes: int, motion_hz: float,
             no_heart_rate: bool, seed: int) -> None:
    """Simulate a whole night with simulated sensors on simulated time."""
    from smartwake.simulation import simulate_night

    result = simulate_night(
        _settings(wake, window, sensitivity),
        date.fromisoformat(on_date),
        tz=_tz(utc_offset),
        wake_after_min=wake_after,
        snoozes=snoozes,
        motion_hz=motion_hz,
        heart_rate=not no_heart_rate,
        seed=seed,
    )

    click.echo(f"Window: {result.window.window_start_time.isoformat()} -> "
               f"{result.window.target_wake_time.isoformat()}")
    for at, state in result.phases:
        click.echo(f"  {at.strftime('%H:%M:%S')}  {state}")

    if result.trigger is None:
        click.echo("No trigger fired.")
        return
    t = result.trigger
    click.echo(f"\nTrigger: {t.reason.value} at {t.timestamp.strftime('%H:%M:%S')} "
               f"(score {t.score:.2f}, motion {t.components.motion_score:.2f}, "
               f"hr {t.components.heart_rate_score:.2f})")
    click.echo(f"Snoozes: {result.snoozes}  Cues: {result.cues}")
    if result.summary is not None:
        s = result.summary
        click.echo(f"Summary: fired {s.fired_at.strftime('%H:%M:%S')} ({s.reason.value}), "
                   f"best {s.best_score if s.best_score is None else round(s.best_score, 2)}, "
                   f"battery ~{s.battery_impact_estimate}%")
    click.echo(f"Controller stored {result.stored_summaries} summary(ies).")


@main.command()
@click.argument("file", type=click.Path(exists=True))
def decode(file: str) -> None:
    """Decode a JSONL file of sync envelopes."""
    from smartwake import protocol
    from smartwake.exceptions import EnvelopeDecodeError, UnsupportedMessageError

    decoded = unsupported = failed = 0
    with open(file) as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                envelope = protocol.decode(line)
            except UnsupportedMessageError as e:
                unsupported += 1
                click.echo(f"{lineno}: skipped ({e})")
                continue
            except EnvelopeDecodeError as e:
                failed += 1
                click.echo(f"{lineno}: invalid ({e})")
                continue
            decoded += 1
            click.echo(f"{lineno}: {envelope!r}")
            click.echo(f"    {envelope.payload!r}")

    click.echo(f"\n{decoded} decoded, {unsupported} unsupported, {failed} invalid")


@main.command()
@click.argument("file", type=click.Path(exists=True))
def sessions(file: str) -> None:
    """List the wake sessions stored in a history file."""
    from smartwake.store import SessionHistory

    history = SessionHistory(file)
    if len(history) == 0:
        click.echo("No sessions.")
        return
    for s in history.summaries():
        best = f"{s.best_score:.2f}" if s.best_score is not None else "-"
        battery = f"{s.battery_impact_estimate}%" if s.battery_impact_estimate is not None else "-"
        click.echo(
            f"{s.fired_at.isoformat()}  {s.reason.value:<6}  score {s.score_at_fire:.2f}  "
            f"best {best}  battery {battery}"
        )


@main.command()
@click.option("--timeout", "-t", default=10.0, help="Scan timeout in seconds.")
def scan(timeout: float) -> None:
    """Scan for nearby companion devices."""
    from smartwake.scanner import scan as do_scan

    for device, adv in asyncio.run(do_scan(timeout)):
        click.echo(f"{adv.local_name or device.name or '?'}  [{device.address}]  RSSI={adv.rssi}")


@main.command()
@_schedule_options
@click.option("--address", "-a", default=None, help="BLE address of the companion.")
@click.option("--disabled", is_flag=True, help="Push the schedule as disabled.")
@click.option("--listen", default=5.0, help="Seconds to wait for replies after syncing.")
@click.option("--history", "history_path", default=None, type=click.Path(),
              help="Session history file to store received summaries in.")
def sync(wake: str, window: int, sensitivity: str, utc_offset: float, address: str | None,
         disabled: bool, listen: float, history_path: str | None) -> None:
    """Push a schedule to a companion over BLE and collect its replies."""
    from bleak import BleakClient

    from smartwake.ble import BleSyncLink
    from smartwake.clock import AsyncioScheduler
    from smartwake.controller import ControllerSession
    from smartwake.scanner import find_companion
    from smartwake.store import SessionHistory

    settings = _settings(wake, window, sensitivity, enabled=not disabled)

    async def _sync() -> None:
        addr = address
        if addr is None:
            device = await find_companion()
            if device is None:
                click.echo("No companion found.")
                return
            addr = device.address

        click.echo(f"Connecting to {addr}...")
        async with BleakClient(addr) as client:
            link = BleSyncLink(client)
            await link.start()
            controller = ControllerSession(
                link, AsyncioScheduler(), _tz(utc_offset), history=SessionHistory(history_path)
            )
            controller.settings = settings
            payload = controller.sync_schedule()
            click.echo(f"Synced {payload.schedule.wake_time_local} for {payload.effective_date}")
            controller.ping()

            try:
                await asyncio.wait_for(controller.run(), timeout=listen)
            except asyncio.TimeoutError:
                pass
            await link.close()

            if controller.companion_state is not None:
                click.echo(f"Companion state: {controller.companion_state.state}")
            if controller.last_alarm_fired is not None:
                fired = controller.last_alarm_fired
                click.echo(f"Last alarm: {fired.reason.value} at {fired.fired_at.isoformat()}")
            click.echo(f"{len(controller.history)} stored summary(ies)")

    try:
        asyncio.run(_sync())
    except KeyboardInterrupt:
        click.echo("\nStopped.")


if __name__ == "__main__":
    main()
