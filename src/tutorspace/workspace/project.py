"""
Learner project bootstrap and status.

Scaffolds a React + TypeScript (Vite) project in the workspace using the same
command runner learners use, then seeds a few starter files.
"""

import json
from typing import Any

from ..errors import WorkspaceError
from ..logging_config import get_logger
from ..process.command_runner import CommandRunner
from .file_store import FileStore

logger = get_logger(__name__)

SCAFFOLD_TIMEOUT_SECONDS = 600.0

APP_TSX = """import { useState } from 'react'
import './App.css'

function App() {
  const [count, setCount] = useState(0)

  return (
    <div className="App">
      <h1>My Task Manager</h1>
      <p>Welcome to your task management app!</p>
      <div>
        <button onClick={() => setCount(count + 1)}>
          Count: {count}
        </button>
      </div>
      <p>
        Ready to start building? Your tutor will guide you step by step!
      </p>
    </div>
  )
}

export default App
"""

README_MD = """# My Task Manager

This is the task management application you are building in the interactive course.

## What You'll Build

- [ ] Task creation and editing
- [ ] Task completion tracking
- [ ] Task filtering and search
- [ ] Local storage persistence
- [ ] Responsive UI

## Development Commands

```bash
npm run dev    # Start development server
npm run build  # Build for production
npm run lint   # Check code quality
```
"""

VITE_CONFIG_TEMPLATE = """import {{ defineConfig }} from 'vite'
import react from '@vitejs/plugin-react'

export default defineConfig({{
  plugins: [react()],
  server: {{
    port: {port},
    host: true,
    strictPort: true
  }}
}})
"""


class ProjectManager:
    """Reports on and initializes the learner's project."""

    def __init__(self, file_store: FileStore, runner: CommandRunner, dev_server_port: int = 5174) -> None:
        """
        Initialize project manager.

        Args:
            file_store: Workspace file store
            runner: Command runner used for scaffolding
            dev_server_port: Port pinned in the generated vite config
        """
        self.file_store = file_store
        self.runner = runner
        self.dev_server_port = dev_server_port

    def get_project_status(self) -> dict[str, Any]:
        """
        Inspect the workspace.

        Returns:
            Dict with exists, has_git, has_node_modules, package_json
        """
        root = self.file_store.root

        if not root.is_dir():
            return {"exists": False, "has_git": False, "has_node_modules": False, "package_json": None}

        package_json = None
        try:
            package_json = json.loads((root / "package.json").read_text(encoding="utf-8"))
        except (OSError, ValueError):
            pass

        return {
            "exists": True,
            "has_git": (root / ".git").exists(),
            "has_node_modules": (root / "node_modules").is_dir(),
            "package_json": package_json,
        }

    async def initialize_project(self) -> dict[str, Any]:
        """
        Scaffold the project if it does not exist yet.

        Returns:
            Dict with success and message (never raises)
        """
        root = self.file_store.root

        if (root / "package.json").exists():
            return {"success": True, "message": "Project already exists"}

        root.mkdir(parents=True, exist_ok=True)

        steps = [
            ("Creating React + TypeScript project", "npm create --yes vite@latest . -- --template react-ts"),
            ("Installing dependencies", "npm install"),
            ("Initializing git repository", "git init"),
        ]

        for description, command in steps:
            logger.info(f"{description}...")
            failure = await self._run_step(command)
            if failure:
                return {"success": False, "message": f"{description} failed: {failure}"}

        try:
            self.file_store.write_file("src/App.tsx", APP_TSX)
            self.file_store.write_file("README.md", README_MD)
            self.file_store.write_file("vite.config.ts", VITE_CONFIG_TEMPLATE.format(port=self.dev_server_port))
        except (WorkspaceError, OSError) as e:
            logger.exception(f"Failed to write starter files: {e}")
            return {"success": False, "message": f"Failed to write starter files: {e}"}

        for command in ("git add .", 'git commit -m "Initial commit: create React app"'):
            failure = await self._run_step(command)
            if failure:
                logger.warning(f"Initial commit step failed: {failure}")

        logger.info(f"Project initialized at {root}")

        return {"success": True, "message": "Project initialized successfully"}

    async def _run_step(self, command: str) -> str | None:
        try:
            result = await self.runner.execute(command, timeout=SCAFFOLD_TIMEOUT_SECONDS)
        except WorkspaceError as e:
            return e.message

        if not result.success:
            return result.stderr or result.stdout or f"exit code {result.exit_code}"

        return None
