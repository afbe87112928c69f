#!/usr/bin/env python3

import argparse
import getpass
import json
import os
import platform
import re
import subprocess
import sys
import time
from collections import namedtuple
from dataclasses import asdict, dataclass
from typing import Optional

import requests
from dotenv import load_dotenv


__version__ = "1.1.0"

DEFAULT_API_URL = "https://terminal-ai-api.vercel.app/api"
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF = 1.0
DEFAULT_CONFIG_DIR = "~/.terminal-ai"
DEFAULT_HISTORY_FILE = f"{DEFAULT_CONFIG_DIR}/history.json"
DEFAULT_ENV_FILE = f"{DEFAULT_CONFIG_DIR}/.env"
HISTORY_LIMIT = 20
HISTORY_CONTEXT = 5
HISTORY_ROLES = ("user", "assistant")
STREAMED_OUTPUT_NOTE = "(Output was streamed above)"

# Upper bounds for the lenient text scans over model output.
MAX_JSON_SCAN = 20000
MAX_JSON_CANDIDATES = 8
MAX_COLLAPSE_LENGTH = 2000
MAX_COLLAPSE_PASSES = 3
# Response bodies are read byte by byte so a slow drip cannot outlast the deadline.
READ_CHUNK_SIZE = 1

INVALID_INPUT = "INVALID_INPUT"
TIMEOUT = "TIMEOUT"
API_ERROR = "API_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
NO_JSON_FOUND = "NO_JSON_FOUND"
MALFORMED_JSON = "MALFORMED_JSON"
MISSING_FIELD = "MISSING_FIELD"
EMPTY_COMMAND = "EMPTY_COMMAND"
INVALID_REDIRECTION = "INVALID_REDIRECTION"
ADMIN_REQUIRED = "ADMIN_REQUIRED"
SPAWN_ERROR = "SPAWN_ERROR"
NON_ZERO_EXIT = "NON_ZERO_EXIT"

ADMIN_COMMANDS = frozenset(
    {
        # Windows
        "netsh",
        "net",
        "sc",
        "reg",
        "bcdedit",
        "diskpart",
        "dism",
        "sfc",
        "format",
        "chkdsk",
        "taskkill",
        "rd /s",
        "rmdir /s",
        "del /f",
        "takeown",
        "icacls",
        "attrib",
        "runas",
        # POSIX
        "sudo",
        "rm -rf",
        "rm -fr",
        "mkfs",
        "dd if=",
        "fdisk",
        "parted",
        "chmod",
        "chown",
        "systemctl",
        "iptables",
        "shutdown",
        "reboot",
        "kill -9",
    }
)
DELETE_PREFIXES = ("del ", "rd ", "rmdir ", "rm ")

# Exit statuses the platform shell uses for "cannot run" and "not permitted".
if os.name == "nt":
    NOT_FOUND_EXIT_CODES = {9009}
    ADMIN_EXIT_CODES = {5}
else:
    NOT_FOUND_EXIT_CODES = {127}
    ADMIN_EXIT_CODES = {126}

GATE_AUTO_APPROVED = "auto-approved"
GATE_APPROVED = "approved"
GATE_CANCELLED = "cancelled"
GATE_EXECUTES = {GATE_AUTO_APPROVED, GATE_APPROVED}

COMMAND_PROMPT_TEMPLATE = """Task: Analyze the user's request, formulate a step-by-step reasoning plan, and then generate a single, valid {shell} command to accomplish it.

System Information:
Current directory: {cwd}
Username: {username}
Hostname: {hostname}
OS: {platform} {release}

{history}User request: {request}

Requirements:
1. Reasoning: First, provide a brief, step-by-step plan (as a string) explaining how you'll achieve the user's request.
2. Command: Second, provide ONLY ONE single-line, executable {shell} command.{shell_note}
3. Safety: Avoid destructive commands unless explicitly asked. Use relative paths.
4. Format: Your response MUST be a single JSON object in this exact format:
{{
  "reasoning": "Your step-by-step plan here.",
  "command": "Your single-line command here."
}}

Your JSON response:"""

CHAT_PROMPT_TEMPLATE = """You are T-AI, a helpful assistant for terminal users. Be concise and practical. Markdown formatting is allowed.

System Information:
Current directory: {cwd}
Username: {username}
OS: {platform} {release}

{history}User message: {request}"""

BANNER = r"""
  _____          _    ___
 |_   _|        / \  |_ _|
   | |  _____  / _ \  | |
   | | |_____|/ ___ \ | |
   |_|       /_/   \_\___|

   Your AI-powered terminal assistant  v{version}
"""

FENCE_OPEN = re.compile(
    r"^```(?:[\w.+-]*[ \t]*\r?\n|(?:cmd|bat|batch|sh|bash|zsh|shell|console|powershell|ps1)[ \t]+)?",
    re.IGNORECASE,
)
FENCE_CLOSE = re.compile(r"\r?\n?```\s*$")
PROMPT_PREFIX = re.compile(r"^(?:(?:>+|\$(?=\s|$))\s*)+")
CMD_PREFIX = re.compile(r"^cmd(?:\.exe)?\s+/c\s+", re.IGNORECASE)
REPEATED_COMMAND = re.compile(r"^(?P<unit>.{2,}?)(?:\s*(?P=unit))+$")
CHAIN_OPERATOR = re.compile(r"\s*(&&|\|\||;|(?<![<>&|])&(?![&>]))\s*")

Attempt = namedtuple("Attempt", ["outcome", "body", "error"])


class TaiError(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


class ApiError(TaiError):
    def __init__(self, status, body):
        self.status = status
        self.body = body
        detail = (body or "").strip() or "(empty body)"
        super().__init__(API_ERROR, f"API error {status}: {detail}")


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    content: str
    timestamp: int


@dataclass(frozen=True)
class AIResponse:
    reasoning: str
    command: str


@dataclass
class ExecutionResult:
    """Outcome of running one command; failures are reported here, not raised."""

    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    exit_code: Optional[int] = None


def env_float(name):
    value = os.getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def env_int(name):
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def warn(message):
    print(f"Warning: {message}", file=sys.stderr)


class HistoryStore:
    """Bounded conversation log persisted as a JSON array.

    The whole file is read on load() and rewritten on every mutation;
    the last writer wins.
    """

    def __init__(self, path, limit=HISTORY_LIMIT):
        self.path = os.path.expanduser(path)
        self.limit = limit
        self.messages = []

    def load(self):
        self.messages = []
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            warn(f"could not read history file {self.path}: {exc}")
            return
        if not isinstance(data, list):
            warn(f"ignoring history file {self.path}: expected a list of messages")
            return

        messages = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            role = entry.get("role")
            content = entry.get("content")
            if role not in HISTORY_ROLES or not isinstance(content, str):
                continue
            timestamp = entry.get("timestamp")
            if not isinstance(timestamp, int):
                timestamp = 0
            messages.append(ConversationMessage(role, content, timestamp))
        self.messages = messages[-self.limit:]

    def recent(self, count=HISTORY_CONTEXT):
        if count <= 0:
            return []
        return list(self.messages[-count:])

    def append(self, role, content):
        if role not in HISTORY_ROLES:
            raise TaiError(INVALID_INPUT, f"Unknown history role: {role!r}.")
        message = ConversationMessage(role, content, int(time.time() * 1000))
        self.messages.append(message)
        if len(self.messages) > self.limit:
            self.messages = self.messages[-self.limit:]
        self.save()
        return message

    def clear(self):
        self.messages = []
        self.save()

    def save(self):
        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump([asdict(message) for message in self.messages], handle, indent=2)
                handle.write("\n")
        except OSError as exc:
            warn(f"could not save history to {self.path}: {exc}")
            return False
        return True


class Context:
    """Process-lifetime state shared by every pipeline stage."""

    def __init__(
        self,
        history,
        api_url=DEFAULT_API_URL,
        timeout=DEFAULT_TIMEOUT,
        max_attempts=DEFAULT_MAX_ATTEMPTS,
        retry_backoff=DEFAULT_RETRY_BACKOFF,
        debug=False,
        session=None,
    ):
        self.history = history
        self.api_url = api_url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.debug = debug
        self.session = session if session is not None else requests.Session()

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def open_context(args):
    history = HistoryStore(args.history_file)
    history.load()
    return Context(
        history=history,
        api_url=args.api_url,
        timeout=args.timeout,
        max_attempts=args.max_attempts,
        retry_backoff=args.retry_backoff,
        debug=args.debug,
    )


def debug(ctx, message):
    if ctx.debug:
        print(f"[debug] {message}", file=sys.stderr)


def login_name():
    username = os.getenv("USERNAME") or os.getenv("USER")
    if username:
        return username
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def system_facts():
    if os.name == "nt":
        shell, shell_note = "Windows Command Prompt (CMD)", " No PowerShell."
    else:
        shell, shell_note = "POSIX shell (sh)", ""
    return {
        "cwd": os.getcwd(),
        "username": login_name(),
        "hostname": platform.node() or "unknown",
        "platform": platform.system() or sys.platform,
        "release": platform.release(),
        "shell": shell,
        "shell_note": shell_note,
    }


def render_history(history):
    lines = [f"{message.role}: {message.content}" for message in history[-HISTORY_CONTEXT:]]
    if not lines:
        return ""
    return "Recent conversation:\n" + "\n".join(lines) + "\n\n"


def require_input(user_input):
    text = (user_input or "").strip()
    if not text:
        raise TaiError(INVALID_INPUT, "User input is required.")
    return text


def build_command_prompt(user_input, history, facts=None):
    request = require_input(user_input)
    facts = facts or system_facts()
    return COMMAND_PROMPT_TEMPLATE.format(
        history=render_history(history),
        request=request,
        **facts,
    )


def build_chat_prompt(user_input, history, facts=None):
    request = require_input(user_input)
    facts = facts or system_facts()
    return CHAT_PROMPT_TEMPLATE.format(
        history=render_history(history),
        request=request,
        cwd=facts["cwd"],
        username=facts["username"],
        platform=facts["platform"],
        release=facts["release"],
    )


def read_body(response, deadline):
    chunks = []
    for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
        if time.monotonic() > deadline:
            return None
        chunks.append(chunk)
    return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")


def attempt_request(ctx, payload):
    timed_out = Attempt("fatal", None, TaiError(TIMEOUT, f"Request timed out after {ctx.timeout:g}s."))
    deadline = time.monotonic() + ctx.timeout
    try:
        response = ctx.session.post(
            ctx.api_url,
            headers={"Content-Type": "application/json"},
            json=payload,
            timeout=ctx.timeout,
            stream=True,
        )
    except requests.Timeout:
        return timed_out
    except requests.RequestException as exc:
        return Attempt("retry", None, TaiError(NETWORK_ERROR, f"Network error: {exc}"))

    try:
        body = read_body(response, deadline)
    except requests.Timeout:
        return timed_out
    except requests.RequestException as exc:
        # iter_content reports a read timeout as ConnectionError.
        if time.monotonic() > deadline:
            return timed_out
        return Attempt("retry", None, TaiError(NETWORK_ERROR, f"Network error: {exc}"))
    finally:
        response.close()

    if body is None:
        return timed_out
    if not 200 <= response.status_code < 300:
        return Attempt("retry", None, ApiError(response.status_code, body))
    return Attempt("ok", body, None)


def send_prompt(ctx, payload):
    last_error = None
    for attempt in range(1, ctx.max_attempts + 1):
        debug(ctx, f"POST {ctx.api_url} (attempt {attempt}/{ctx.max_attempts})")
        result = attempt_request(ctx, payload)
        if result.outcome == "ok":
            return result.body
        if result.outcome == "fatal":
            raise result.error

        last_error = result.error
        debug(ctx, f"attempt {attempt} failed: {last_error.message}")
        if attempt < ctx.max_attempts:
            delay = max(ctx.retry_backoff, 0) * attempt
            if delay > 0:
                debug(ctx, f"retrying in {delay:g}s")
                time.sleep(delay)

    raise TaiError(
        MAX_RETRIES_EXCEEDED,
        f"Request failed after {ctx.max_attempts} attempts: {last_error.message}",
    )


def extract_message_content(content):
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for chunk in content:
            if isinstance(chunk, dict) and chunk.get("type") == "text":
                parts.append(chunk.get("text", ""))
        return "".join(parts)
    if content is None:
        return ""
    return str(content)


def extract_content(body):
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise TaiError(MALFORMED_JSON, f"Response body is not valid JSON: {exc}")
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        return ""
    return extract_message_content(message.get("content", ""))


def scan_json_object(text, start):
    depth = 0
    in_string = False
    escaped = False
    end = min(len(text), start + MAX_JSON_SCAN)
    for index in range(start, end):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def find_json_object(text):
    start = text.find("{")
    candidates = 0
    while start >= 0 and candidates < MAX_JSON_CANDIDATES:
        snippet = scan_json_object(text, start)
        if snippet is not None:
            return snippet
        candidates += 1
        start = text.find("{", start + 1)
    return None


def strip_markdown_fences(text):
    output = FENCE_OPEN.sub("", text.strip())
    output = FENCE_CLOSE.sub("", output)
    return output.strip().strip("`").strip()


def collapse_repeated_segments(command):
    parts = CHAIN_OPERATOR.split(command)
    segments, operators = parts[0::2], parts[1::2]
    kept = [segments[0]]
    kept_operators = []
    for operator, segment in zip(operators, segments[1:]):
        if segment and segment == kept[-1]:
            continue
        kept_operators.append(operator)
        kept.append(segment)
    if len(kept) == len(segments):
        return command
    rebuilt = kept[0]
    for operator, segment in zip(kept_operators, kept[1:]):
        rebuilt += f" {operator} {segment}" if segment else f" {operator}"
    return rebuilt.strip()


def collapse_repeats(command):
    if len(command) > MAX_COLLAPSE_LENGTH:
        return command
    for _ in range(MAX_COLLAPSE_PASSES):
        match = REPEATED_COMMAND.match(command)
        collapsed = match.group("unit").strip() if match else command
        collapsed = collapse_repeated_segments(collapsed)
        if collapsed == command:
            break
        command = collapsed
    return command


def count_redirections(command):
    count = 0
    quote = None
    index = 0
    length = len(command)
    while index < length:
        char = command[index]
        if quote is None and char in "^\\":
            index += 2
            continue
        if quote is not None:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == ">":
            run_end = index
            while run_end < length and command[run_end] == ">":
                run_end += 1
            if run_end - index == 1 and command[run_end:run_end + 1] != "&":
                count += 1
            index = run_end
            continue
        index += 1
    return count


def sanitize_command(command):
    text = strip_markdown_fences(command)
    text = re.sub(r"\s+", " ", text).strip()
    text = PROMPT_PREFIX.sub("", text)
    text = CMD_PREFIX.sub("", text).strip()
    text = collapse_repeats(text)
    if not text:
        raise TaiError(EMPTY_COMMAND, "Model returned an empty command.")
    if count_redirections(text) > 1:
        raise TaiError(
            INVALID_REDIRECTION,
            f"Refusing command with more than one output redirection: {text}",
        )
    return text


def parse_ai_response(content):
    snippet = find_json_object(content or "")
    if snippet is None:
        raise TaiError(NO_JSON_FOUND, "No JSON object found in AI response.")
    try:
        parsed = json.loads(snippet, strict=False)
    except ValueError as exc:
        raise TaiError(MALFORMED_JSON, f"AI response contains malformed JSON: {exc}")
    if not isinstance(parsed, dict):
        raise TaiError(MALFORMED_JSON, "AI response JSON is not an object.")

    command = parsed.get("command")
    reasoning = parsed.get("reasoning")
    missing = [
        name
        for name, value in (("command", command), ("reasoning", reasoning))
        if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        raise TaiError(MISSING_FIELD, f"AI response missing {' and '.join(repr(m) for m in missing)} field.")
    return AIResponse(reasoning=reasoning.strip(), command=sanitize_command(command))


def is_dangerous(command, admin_commands=ADMIN_COMMANDS, delete_prefixes=DELETE_PREFIXES):
    lowered = command.lower()
    if any(token.lower() in lowered for token in admin_commands):
        return True
    return lowered.lstrip().startswith(tuple(prefix.lower() for prefix in delete_prefixes))


def run_execution_gate(command, confirm, classify=is_dangerous):
    if not classify(command):
        return GATE_AUTO_APPROVED
    # Pending confirmation until the user answers.
    if confirm(command):
        return GATE_APPROVED
    return GATE_CANCELLED


def prompt_confirmation(command, read_input=None):
    read_input = read_input or input
    print(f"WARNING: potentially dangerous command: {command}")
    try:
        answer = read_input("Execute this command? (y/n) ").strip().lower()
    except EOFError:
        print()
        return False
    return answer in {"y", "yes"}


def execute_command(command):
    try:
        completed = subprocess.run(command, shell=True, check=False)
    except OSError as exc:
        return ExecutionResult(success=False, output="", error=str(exc), code=SPAWN_ERROR)

    returncode = completed.returncode
    if returncode == 0:
        return ExecutionResult(success=True, output=STREAMED_OUTPUT_NOTE, exit_code=0)
    if returncode in NOT_FOUND_EXIT_CODES:
        return ExecutionResult(
            success=False,
            output="",
            error=f"Command not found (exit code {returncode})",
            code=SPAWN_ERROR,
            exit_code=returncode,
        )
    if returncode in ADMIN_EXIT_CODES:
        return ExecutionResult(
            success=False,
            output="",
            error=f"Command exited with code {returncode}; administrator privileges may be required",
            code=ADMIN_REQUIRED,
            exit_code=returncode,
        )
    return ExecutionResult(
        success=False,
        output="",
        error=f"Command exited with code {returncode}",
        code=NON_ZERO_EXIT,
        exit_code=returncode,
    )


def capture_output(command):
    try:
        completed = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise TaiError(SPAWN_ERROR, str(exc))
    if completed.returncode != 0:
        message = (completed.stderr or "").strip() or f"Command exited with code {completed.returncode}"
        raise TaiError(NON_ZERO_EXIT, message)
    return completed.stdout


def execute_captured(command):
    try:
        output = capture_output(command)
    except TaiError as exc:
        return ExecutionResult(success=False, output="", error=exc.message, code=exc.code)
    return ExecutionResult(success=True, output=output, exit_code=0)


def generate_command(ctx, user_input):
    prompt = build_command_prompt(user_input, ctx.history.recent(HISTORY_CONTEXT))
    debug(ctx, f"prompt:\n{prompt}")
    body = send_prompt(ctx, {"prompt": prompt})
    content = extract_content(body)
    debug(ctx, f"raw model content: {content}")
    response = parse_ai_response(content)
    ctx.history.append("user", user_input.strip())
    ctx.history.append("assistant", response.command)
    return response


def generate_chat_response(ctx, user_input):
    prompt = build_chat_prompt(user_input, ctx.history.recent(HISTORY_CONTEXT))
    debug(ctx, f"prompt:\n{prompt}")
    body = send_prompt(ctx, {"prompt": prompt, "mode": "chat"})
    reply = extract_content(body).strip()
    if not reply:
        raise TaiError(MISSING_FIELD, "Model returned an empty response.")
    ctx.history.append("user", user_input.strip())
    ctx.history.append("assistant", reply)
    return reply


def report_result(result):
    if result.success:
        print("Command completed successfully.")
        if result.output and result.output != STREAMED_OUTPUT_NOTE:
            print(result.output.rstrip("\n"))
        return
    print(f"Command failed: {result.error}", file=sys.stderr)


def run_command_pipeline(ctx, user_input, confirm=prompt_confirmation, execute=execute_command):
    response = generate_command(ctx, user_input)
    print(f"Reasoning: {response.reasoning}")
    print(f"Command: {response.command}")

    state = run_execution_gate(response.command, confirm)
    if state not in GATE_EXECUTES:
        print("Execution cancelled.")
        return state, None

    result = execute(response.command)
    report_result(result)
    return state, result


def print_banner():
    print(BANNER.format(version=__version__))


def run_chat(ctx, read_input=None):
    read_input = read_input or input
    print_banner()
    print("Chat mode. Type 'exit' or 'quit' to leave, 'clear' to clear history, 'banner' to show the banner.")
    while True:
        try:
            line = read_input("tai> ")
        except (EOFError, KeyboardInterrupt):
            print()
            break

        keyword = line.strip().lower()
        if keyword in {"exit", "quit"}:
            print("Goodbye!")
            break
        if keyword == "clear":
            ctx.history.clear()
            print("History cleared.")
            continue
        if keyword == "banner":
            print_banner()
            continue
        if not keyword:
            continue

        try:
            reply = generate_chat_response(ctx, line)
        except TaiError as exc:
            print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)
            continue
        print(reply)
        print()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="tai",
        description=(
            "AI-powered terminal assistant. Describe what you want to do and T-AI "
            "generates and runs a single shell command. Use 'tai chat' for "
            "interactive chat and 'tai clear-history' to forget the conversation."
        ),
    )
    parser.add_argument("prompt", nargs="*", help="What you want to do, or 'chat' / 'clear-history'.")
    parser.add_argument("-d", "--debug", action="store_true", help="Print diagnostics to stderr.")
    parser.add_argument(
        "-n",
        "--new-conversation",
        action="store_true",
        help="Clear the conversation history before starting.",
    )
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Run dangerous commands without asking for confirmation.",
    )
    parser.add_argument(
        "-q",
        "--capture",
        action="store_true",
        help="Run the command silently and print its captured output afterwards.",
    )
    parser.add_argument(
        "--api-url",
        default=os.getenv("TAI_API_URL", DEFAULT_API_URL),
        help=f"Generation endpoint (default: {DEFAULT_API_URL}).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=env_float("TAI_TIMEOUT") or DEFAULT_TIMEOUT,
        help=f"Per-attempt request timeout in seconds (default: {DEFAULT_TIMEOUT}).",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=env_int("TAI_MAX_ATTEMPTS") or DEFAULT_MAX_ATTEMPTS,
        help=f"Request attempts before giving up (default: {DEFAULT_MAX_ATTEMPTS}).",
    )
    parser.add_argument(
        "--retry-backoff",
        type=float,
        default=env_float("TAI_RETRY_BACKOFF") if env_float("TAI_RETRY_BACKOFF") is not None else DEFAULT_RETRY_BACKOFF,
        help=f"Seconds to wait per attempt index between retries (default: {DEFAULT_RETRY_BACKOFF}).",
    )
    parser.add_argument(
        "--history-file",
        default=os.getenv("TAI_HISTORY_FILE", DEFAULT_HISTORY_FILE),
        help=f"Conversation history file (default: {DEFAULT_HISTORY_FILE}).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def prompt_from_args(args):
    arg_prompt = " ".join(args.prompt).strip()
    stdin_prompt = ""
    if not sys.stdin.isatty():
        stdin_prompt = sys.stdin.read().strip()

    if arg_prompt and stdin_prompt:
        return f"{arg_prompt}\n\n{stdin_prompt}".strip()
    return arg_prompt or stdin_prompt


def selected_mode(args):
    if args.prompt == ["chat"]:
        return "chat"
    if args.prompt == ["clear-history"]:
        return "clear-history"
    return "command"


def main(argv=None):
    load_dotenv(os.path.expanduser(DEFAULT_ENV_FILE))
    args = parse_args(argv)

    if args.max_attempts < 1:
        print("--max-attempts must be >= 1.", file=sys.stderr)
        sys.exit(2)
    if args.timeout <= 0:
        print("--timeout must be > 0.", file=sys.stderr)
        sys.exit(2)
    if args.retry_backoff < 0:
        print("--retry-backoff must be >= 0.", file=sys.stderr)
        sys.exit(2)

    mode = selected_mode(args)
    result = None
    try:
        with open_context(args) as ctx:
            if mode == "clear-history":
                ctx.history.clear()
                print("Conversation history cleared.")
                return
            if args.new_conversation:
                ctx.history.clear()
                print("Started a new conversation.")
            if mode == "chat":
                run_chat(ctx)
                return

            query = prompt_from_args(args)
            if not query:
                print_banner()
                print("Use 'tai <what you want to do>' to generate and run a command.")
                print("Use 'tai chat' to start interactive mode, 'tai --help' to see all options.")
                return

            confirm = (lambda command: True) if args.yes else prompt_confirmation
            execute = execute_captured if args.capture else execute_command
            _, result = run_command_pipeline(ctx, query, confirm=confirm, execute=execute)
    except TaiError as exc:
        print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)
        sys.exit(1)
    except requests.RequestException as exc:
        print(f"Request error: {exc}", file=sys.stderr)
        sys.exit(1)

    if result is not None and not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
