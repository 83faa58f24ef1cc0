from __future__ import annotations

from html import escape

from .models import TaskDetail

_STYLE = """
  <style>
    :root {
      --bg: #f3efe6;
      --panel: #fffaf0;
      --ink: #112433;
      --muted: #5c6b74;
      --accent: #0f8b8d;
      --accent-strong: #136f63;
      --line: #d7d1c3;
      --warn: #b00020;
    }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      min-height: 100vh;
      font-family: "Space Grotesk", sans-serif;
      color: var(--ink);
      background: var(--bg);
    }
    .wrap {
      max-width: 1000px;
      margin: 24px auto;
      padding: 0 16px 24px;
      display: grid;
      gap: 16px;
    }
    .hero, .card {
      background: var(--panel);
      border: 1px solid var(--line);
      border-radius: 16px;
      box-shadow: 0 8px 22px rgba(17, 36, 51, 0.08);
    }
    .hero {
      padding: 20px;
      display: flex;
      flex-wrap: wrap;
      align-items: center;
      justify-content: space-between;
      gap: 10px;
    }
    .title { margin: 0; font-size: clamp(1.3rem, 2.5vw, 2rem); line-height: 1.1; }
    .sub { margin: 6px 0 0; color: var(--muted); }
    .card { padding: 16px; }
    a { color: var(--accent-strong); }
    table { width: 100%; border-collapse: collapse; font-size: 0.92rem; }
    th, td { text-align: left; padding: 8px; border-bottom: 1px solid var(--line); }
    .mono { font-family: "IBM Plex Mono", monospace; font-size: 0.82rem; }
    .status-failed { color: var(--warn); font-weight: 700; }
    .status-succeeded { color: var(--accent-strong); font-weight: 700; }
    label { display: block; margin: 10px 0 6px; font-weight: 700; font-size: 0.92rem; }
    textarea, input {
      width: 100%;
      border: 1px solid var(--line);
      border-radius: 12px;
      padding: 10px 12px;
      font-family: "IBM Plex Mono", monospace;
      font-size: 0.9rem;
      background: #fff;
      color: var(--ink);
    }
    textarea { min-height: 148px; resize: vertical; }
    button {
      margin-top: 12px;
      border: none;
      border-radius: 10px;
      padding: 10px 14px;
      font-weight: 700;
      cursor: pointer;
      background: var(--accent);
      color: #fff;
    }
    .status { margin: 10px 0 0; font-family: "IBM Plex Mono", monospace; font-size: 0.9rem; }
    .error { color: var(--warn); }
    pre {
      margin: 0;
      overflow: auto;
      max-height: 380px;
      background: #112433;
      color: #ebf7f7;
      border-radius: 12px;
      padding: 14px;
      font-family: "IBM Plex Mono", monospace;
      font-size: 0.82rem;
    }
  </style>
"""


def _page(title: str, body: str) -> str:
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{escape(title)}</title>
{_STYLE}
</head>
<body>
  <main class="wrap">
{body}
  </main>
</body>
</html>
"""


def render_index(tasks: list[TaskDetail], *, app_name: str = "playbook-api") -> str:
    rows: list[str] = []
    for detail in tasks:
        task = detail.task
        task_id = escape(task.task_id)
        error = escape(task.error or "")
        rows.append(
            "      <tr>"
            f"<td>{escape(task.name)}</td>"
            f'<td class="mono">{task_id}</td>'
            f'<td class="status-{escape(task.status)}">{escape(task.status)}</td>'
            f'<td class="mono">{escape(task.updated_at.isoformat(timespec="seconds"))}</td>'
            f"<td>{escape(detail.user.name if detail.user else '')}</td>"
            f'<td><a href="/task/{task_id}">detail</a> · '
            f'<a href="/runTask/{task_id}">run</a> · '
            f'<a href="/result/{task_id}">result</a></td>'
            f'<td class="mono error">{error}</td>'
            "</tr>"
        )
    if not rows:
        rows.append('      <tr><td colspan="7">No tasks yet.</td></tr>')

    body = f"""    <section class="hero">
      <div>
        <h1 class="title">Playbook Console</h1>
        <p class="sub">Recent playbook tasks.</p>
      </div>
      <a href="/task">New task</a>
    </section>
    <section class="card">
      <table>
        <thead>
          <tr><th>Name</th><th>Task ID</th><th>Status</th><th>Updated</th>
          <th>Owner</th><th>Actions</th><th>Error</th></tr>
        </thead>
        <tbody>
{chr(10).join(rows)}
        </tbody>
      </table>
    </section>"""
    return _page(app_name, body)


def render_create_page(*, app_name: str = "playbook-api") -> str:
    body = """    <section class="hero">
      <div>
        <h1 class="title">New Playbook Task</h1>
        <p class="sub">Steps are nested under a single play targeting the servers group.</p>
      </div>
      <a href="/">All tasks</a>
    </section>
    <section class="card">
      <label for="nameInput">Name</label>
      <input id="nameInput" value="ping-test">
      <label for="playbookInput">Playbook tasks (YAML list)</label>
      <textarea id="playbookInput">- name: ping
  ping:</textarea>
      <label for="inventoryInput">Inventory hosts</label>
      <textarea id="inventoryInput">host1 ansible_host=10.0.0.5</textarea>
      <button id="createBtn">Create Task</button>
      <p class="status" id="statusText">Ready.</p>
    </section>
    <section class="card">
      <label>Response</label>
      <pre id="output">No response yet.</pre>
    </section>

  <script>
    const statusText = document.getElementById("statusText");
    const output = document.getElementById("output");

    function setStatus(message, isError = false) {
      statusText.textContent = message;
      statusText.classList.toggle("error", isError);
    }

    document.getElementById("createBtn").addEventListener("click", async () => {
      try {
        setStatus("Creating task...");
        const response = await fetch("/task", {
          method: "POST",
          headers: { "Content-Type": "application/json" },
          body: JSON.stringify({
            name: document.getElementById("nameInput").value.trim(),
            playbook: document.getElementById("playbookInput").value,
            inventory: document.getElementById("inventoryInput").value,
          }),
        });
        const data = await response.json();
        if (!response.ok) {
          throw new Error(JSON.stringify(data));
        }
        output.textContent = JSON.stringify(data, null, 2);
        setStatus(`Task created: ${data.task_id}`);
      } catch (err) {
        setStatus(String(err.message || err), true);
      }
    });
  </script>"""
    return _page(f"{app_name} - new task", body)
