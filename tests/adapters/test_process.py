import os
import sys

import pytest

from dockhand.adapters.process import CommandFailed, run_command, split_command


@pytest.mark.asyncio
async def test_run_command_captures_output():
    result = await run_command([sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"])
    assert result.ok
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


@pytest.mark.asyncio
async def test_non_zero_exit_raises_with_details():
    with pytest.raises(CommandFailed) as exc_info:
        await run_command([sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"])
    assert exc_info.value.returncode == 3
    assert exc_info.value.stderr == "bad"
    assert not exc_info.value.timed_out


@pytest.mark.asyncio
async def test_non_zero_exit_without_check_returns_result():
    result = await run_command([sys.executable, "-c", "raise SystemExit(2)"], check=False)
    assert result.returncode == 2
    assert not result.ok


@pytest.mark.asyncio
async def test_timeout_kills_the_child():
    with pytest.raises(CommandFailed) as exc_info:
        await run_command([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
    assert exc_info.value.timed_out


@pytest.mark.asyncio
async def test_missing_executable_raises_command_failed():
    with pytest.raises(CommandFailed) as exc_info:
        await run_command(["dockhand-no-such-binary-xyz"])
    assert exc_info.value.returncode is None


@pytest.mark.asyncio
async def test_env_replaces_child_environment():
    result = await run_command(
        [sys.executable, "-c", "import os; print(os.environ.get('DEMO_HOST_PORT'))"],
        env={"DEMO_HOST_PORT": "4321", **{k: v for k, v in os.environ.items() if k == "SYSTEMROOT"}},
    )
    assert result.stdout.strip() == "4321"


def test_split_command():
    assert split_command("docker compose") == ["docker", "compose"]
    assert split_command("docker-compose") == ["docker-compose"]
