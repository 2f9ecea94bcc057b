from __future__ import annotations

from html import escape


def render_homepage(*, app_name: str = "agent-dashboard") -> str:
    return _PAGE.replace("__APP_NAME__", escape(app_name))


_PAGE = """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Agent Army Dashboard</title>
  <link rel="preconnect" href="https://fonts.googleapis.com">
  <link rel="preconnect" href="https://fonts.gstatic.com" crossorigin>
  <link
    href="https://fonts.googleapis.com/css2?family=Space+Grotesk:wght@400;500;700&display=swap"
    rel="stylesheet"
  >
  <link
    href="https://fonts.googleapis.com/css2?family=IBM+Plex+Mono:wght@400;500&display=swap"
    rel="stylesheet"
  >
  <style>
    :root {
      --bg: #0a0a0b;
      --panel: #141416;
      --ink: #e1e1e3;
      --muted: #8a8a93;
      --accent: #10b981;
      --line: #26262b;
      --warn: #ef4444;
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
      max-width: 1200px;
      margin: 24px auto;
      padding: 0 16px 24px;
      display: grid;
      gap: 16px;
    }
    .hero, .card {
      background: var(--panel);
      border: 1px solid var(--line);
      border-radius: 16px;
    }
    .hero {
      padding: 20px;
      display: flex;
      flex-wrap: wrap;
      align-items: center;
      justify-content: space-between;
      gap: 10px;
    }
    .title { margin: 0; font-size: clamp(1.3rem, 2.5vw, 2rem); }
    .sub { margin: 6px 0 0; color: var(--muted); }
    .pill {
      font-family: "IBM Plex Mono", monospace;
      font-size: 0.78rem;
      border: 1px solid var(--line);
      border-radius: 999px;
      padding: 6px 10px;
    }
    .pill.live { color: var(--accent); border-color: var(--accent); }
    .card { padding: 16px; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .goal { display: flex; gap: 8px; }
    input {
      flex: 1;
      padding: 10px 12px;
      border-radius: 10px;
      border: 1px solid var(--line);
      background: var(--bg);
      color: var(--ink);
      font: inherit;
    }
    button {
      padding: 10px 16px;
      border: 0;
      border-radius: 10px;
      background: var(--accent);
      color: #04130d;
      font: inherit;
      font-weight: 700;
      cursor: pointer;
    }
    button:disabled { opacity: 0.5; cursor: wait; }
    ul { list-style: none; margin: 0; padding: 0; display: grid; gap: 8px; }
    li {
      border: 1px solid var(--line);
      border-radius: 10px;
      padding: 8px 10px;
      display: flex;
      justify-content: space-between;
      gap: 10px;
    }
    .status-completed { color: var(--accent); }
    .status-failed { color: var(--warn); }
    .status-pending { color: var(--muted); }
    pre {
      margin: 0;
      max-height: 320px;
      overflow: auto;
      font-family: "IBM Plex Mono", monospace;
      font-size: 0.8rem;
      white-space: pre-wrap;
    }
    .log-error { color: var(--warn); }
    .log-success { color: var(--accent); }
    @media (max-width: 800px) { .grid { grid-template-columns: 1fr; } }
  </style>
</head>
<body>
  <main class="wrap">
    <section class="hero">
      <div>
        <h1 class="title">Agent Army Dashboard</h1>
        <p class="sub">Describe a goal; agents are planned, created, and run one task at a time.</p>
      </div>
      <span class="pill" id="socketPill">__APP_NAME__ / offline</span>
    </section>

    <section class="card">
      <div class="goal">
        <input id="goalInput" placeholder="Build a landing page for a coffee shop">
        <button id="orchestrateBtn">Orchestrate</button>
      </div>
      <p class="sub" id="statusText">Idle.</p>
    </section>

    <section class="grid">
      <div class="card">
        <h2>Agents</h2>
        <ul id="agentList"></ul>
      </div>
      <div class="card">
        <h2>Tasks</h2>
        <ul id="taskList"></ul>
      </div>
    </section>

    <section class="card">
      <h2>Execution Log</h2>
      <pre id="logOutput"></pre>
    </section>
  </main>

  <script>
    const state = { agents: [], tasks: [], logs: [] };
    const goalInput = document.getElementById("goalInput");
    const orchestrateBtn = document.getElementById("orchestrateBtn");
    const statusText = document.getElementById("statusText");
    const socketPill = document.getElementById("socketPill");

    function setStatus(message) {
      statusText.textContent = message;
    }

    function agentName(agentId) {
      const agent = state.agents.find((item) => item.id === agentId);
      return agent ? agent.name : "SYS";
    }

    function render() {
      const agentList = document.getElementById("agentList");
      agentList.innerHTML = "";
      for (const agent of state.agents) {
        const li = document.createElement("li");
        li.textContent = `${agent.name} (${agent.role})`;
        const badge = document.createElement("span");
        badge.textContent = agent.status;
        li.appendChild(badge);
        agentList.appendChild(li);
      }

      const taskList = document.getElementById("taskList");
      taskList.innerHTML = "";
      for (const task of state.tasks) {
        const li = document.createElement("li");
        li.textContent = `${agentName(task.agent_id)}: ${task.description}`;
        const badge = document.createElement("span");
        badge.className = `status-${task.status}`;
        badge.textContent = task.status;
        li.appendChild(badge);
        taskList.appendChild(li);
      }

      const logOutput = document.getElementById("logOutput");
      logOutput.innerHTML = "";
      for (const log of state.logs) {
        const line = document.createElement("div");
        line.className = `log-${log.level}`;
        const stamp = new Date(log.created_at).toLocaleTimeString();
        line.textContent = `[${stamp}] ${agentName(log.agent_id)}: ${log.message}`;
        logOutput.appendChild(line);
      }
      logOutput.scrollTop = logOutput.scrollHeight;
    }

    async function fetchData() {
      const [agents, tasks, logs] = await Promise.all([
        fetch("/api/agents").then((res) => res.json()),
        fetch("/api/tasks").then((res) => res.json()),
        fetch("/api/logs").then((res) => res.json()),
      ]);
      state.agents = agents;
      state.tasks = tasks;
      state.logs = logs;
      render();
    }

    function connectSocket() {
      const scheme = window.location.protocol === "https:" ? "wss" : "ws";
      const socket = new WebSocket(`${scheme}://${window.location.host}/ws`);
      socket.onopen = () => {
        socketPill.textContent = "__APP_NAME__ / live";
        socketPill.classList.add("live");
      };
      socket.onclose = () => {
        socketPill.textContent = "__APP_NAME__ / offline";
        socketPill.classList.remove("live");
        setTimeout(connectSocket, 3000);
      };
      socket.onmessage = (event) => {
        const data = JSON.parse(event.data);
        if (data.type === "agent_created") {
          state.agents.unshift(data.agent);
        } else if (data.type === "task_created") {
          state.tasks.unshift(data.task);
        } else if (data.type === "task_updated") {
          state.tasks = state.tasks.map((task) => (task.id === data.task.id ? data.task : task));
        } else if (data.type === "log_entry") {
          state.logs.push(data.log);
        }
        render();
      };
    }

    orchestrateBtn.addEventListener("click", async () => {
      const goal = goalInput.value.trim();
      if (!goal) {
        return;
      }
      orchestrateBtn.disabled = true;
      setStatus("Planning...");
      try {
        const response = await fetch("/api/orchestrate", {
          method: "POST",
          headers: { "Content-Type": "application/json" },
          body: JSON.stringify({ goal }),
        });
        const data = await response.json();
        if (!response.ok) {
          throw new Error(data.detail || "Failed to plan agents");
        }
        goalInput.value = "";
        setStatus(`Created ${data.agents.length} agent(s) and ${data.tasks.length} task(s).`);
      } catch (err) {
        setStatus(String(err.message || err));
      } finally {
        orchestrateBtn.disabled = false;
      }
    });

    fetchData().then(connectSocket);
  </script>
</body>
</html>
"""
