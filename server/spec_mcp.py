# /// script
# requires-python = ">=3.10"
# dependencies = ["fastmcp", "openai", "python-dotenv"]
# ///
"""MCP server wrapping the spec-graph CLI as native tools.

Launched via: uv run --python 3.12 server/spec_mcp.py
Transport: stdio (JSON-RPC over stdin/stdout)
"""

import logging
import os
import subprocess
import sys

from fastmcp import FastMCP

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

PLUGIN_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_raw_project_dir = os.environ.get("SPECGRAPH_PROJECT_DIR", "")
PROJECT_DIR = _raw_project_dir if _raw_project_dir and not _raw_project_dir.startswith("$") else os.getcwd()

# Read commands are local; cascade and tersify wait on up to two model calls.
READ_TIMEOUT = 30
MODEL_TIMEOUT = 300

logging.basicConfig(level=logging.INFO, stream=sys.stderr)
log = logging.getLogger("spec-graph-mcp")

mcp = FastMCP("spec-graph")

# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def _run(*args: str, timeout: int = READ_TIMEOUT) -> str:
    """Run the spec-graph CLI with given arguments, return stdout or error string."""
    cmd = [sys.executable, "-m", "specgraph"] + list(args)
    pythonpath = os.pathsep.join(p for p in (PLUGIN_ROOT, os.environ.get("PYTHONPATH", "")) if p)
    env = {**os.environ, "SPECGRAPH_PROJECT_DIR": PROJECT_DIR, "PYTHONPATH": pythonpath}
    log.info("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        return f"ERROR: command timed out after {timeout}s"
    except OSError as e:
        return f"ERROR: {e}"
    output = result.stdout
    if result.returncode != 0:
        err = result.stderr.strip()
        if err:
            output = f"{output}\nERROR: {err}" if output else f"ERROR: {err}"
    return output.strip() if output else "(no output)"


def _gate_flag(on_uncommitted: str) -> list:
    if on_uncommitted == "stage":
        return ["--stage"]
    if on_uncommitted == "continue":
        return ["--force"]
    return []


# ---------------------------------------------------------------------------
# Read tools
# ---------------------------------------------------------------------------


@mcp.tool()
def spec_validate(doc: str = "") -> str:
    """Validate spec metadata, references, mentions and dependency cycles. Returns JSON errors and warnings.

    Args:
        doc: Document ref (e.g. auth.req) or path. Empty validates the whole workspace.
    """
    args = ["validate"]
    if doc:
        args.append(doc)
    args.append("--json")
    return _run(*args)


@mcp.tool()
def spec_deps(doc: str) -> str:
    """Show a document's dependencies, dependents and dependency candidates as JSON.

    Args:
        doc: Document ref (e.g. auth.design) or path
    """
    return _run("deps", doc, "--json")


@mcp.tool()
def spec_diff(doc: str) -> str:
    """List the sections changed since the document's last cascade baseline.

    Args:
        doc: Document ref or path
    """
    return _run("diff", doc, "--json")


# ---------------------------------------------------------------------------
# Write tools
# ---------------------------------------------------------------------------


@mcp.tool()
def spec_baseline(doc: str, clear: bool = False) -> str:
    """Record the document's current text as its cascade baseline, or forget it.

    Args:
        doc: Document ref or path
        clear: Delete the stored baseline instead, so the next diff treats every section as changed
    """
    if clear:
        return _run("baseline", "--clear", doc)
    return _run("baseline", doc)


@mcp.tool()
def spec_cascade(doc: str, on_uncommitted: str = "cancel") -> str:
    """Regenerate downstream Design/Implementation documents after a change. Returns JSON result.

    Args:
        doc: Document ref (e.g. auth.req) or path
        on_uncommitted: What to do when git has uncommitted changes: stage, continue or cancel
    """
    return _run("cascade", doc, "--json", *_gate_flag(on_uncommitted), timeout=MODEL_TIMEOUT)


@mcp.tool()
def spec_tersify(doc: str, on_uncommitted: str = "cancel") -> str:
    """Remove content the document duplicates from its references. Returns JSON result.

    Args:
        doc: Document ref or path
        on_uncommitted: What to do when git has uncommitted changes: stage, continue or cancel
    """
    return _run("tersify", doc, "--json", *_gate_flag(on_uncommitted), timeout=MODEL_TIMEOUT)


@mcp.tool()
def spec_normalize(doc: str) -> str:
    """Rewrite file-style references (foo.req.md) in the document as @foo.req mentions.

    Args:
        doc: Document ref or path
    """
    return _run("normalize", doc)


@mcp.tool()
def spec_sync(doc: str) -> str:
    """Refresh last-updated, phase and references metadata from the document body.

    Args:
        doc: Document ref or path
    """
    return _run("sync", doc)


@mcp.tool()
def spec_scaffold(artifact: str = "", description: str = "") -> str:
    """Create a new artifact's requirement and design documents via the model, or the specs/ tree.

    Args:
        artifact: kebab-case artifact name. Empty creates the specs/ directories and starter templates.
        description: What the artifact does. Mention the README to use README.md as project context.
    """
    if not artifact:
        return _run("scaffold")
    return _run("scaffold", artifact, description, "--json", timeout=MODEL_TIMEOUT)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    mcp.run()
