import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from core.config import ConfigManager
from core.controller import TurnController
from core.session import SessionManager
from core.state import ConversationState

# Base directory for the branchbot sources
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"


def serve(config_manager: ConfigManager) -> None:
    """Run the backend proxy."""
    import uvicorn

    from api.server import create_app

    config = config_manager.config
    app = create_app(config_manager)
    logger.info("Voice Agent Backend running on port {}", config.server.port)
    logger.info("Health check: http://localhost:{}/api/health", config.server.port)
    if not config_manager.is_dialogflow_configured:
        logger.info("No Dialogflow project configured, answering with the local matcher.")
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level="warning")


class ConsoleChat:
    """Typed-input front end for the turn controller."""

    def __init__(self, config_manager: ConfigManager, speak: bool = True):
        self.config_manager = config_manager
        self.speak = speak
        self._printed = 0

    def _build_controller(self) -> TurnController:
        client = self.config_manager.config.client
        language = self.config_manager.config.dialogflow.language_code

        if client.backend_url:
            from dialog.http_client import HttpIntentResolver
            resolver = HttpIntentResolver(client.backend_url, timeout=client.request_timeout_seconds)
        else:
            from dialog.fallback import FallbackResolver
            resolver = FallbackResolver()

        synthesizer = None
        if self.speak and client.speak_replies and client.backend_url:
            from speech.audio_player import AudioPlayer
            from speech.tts import HttpSpeechSynthesizer
            synthesizer = HttpSpeechSynthesizer(
                client.backend_url,
                player=AudioPlayer(command=client.player_command),
                voice_name=self.config_manager.config.tts.voice_name,
                language_code=language,
                timeout=client.request_timeout_seconds,
            )

        return TurnController(
            resolver=resolver,
            synthesizer=synthesizer,
            session=SessionManager(agent_id=self.config_manager.config.dialogflow.default_agent),
            state=ConversationState(),
            language_code=language,
            resolve_timeout=client.resolve_timeout_seconds,
        )

    def _print_new_messages(self, state: ConversationState) -> None:
        for message in state.messages[self._printed:]:
            if not message.is_user:
                print(f"\nAgent: {message.text}\n")
        self._printed = len(state.messages)
        if state.last_error:
            print(f"[!] {state.last_error}")

    def select_agent(self, session: SessionManager, key: str) -> bool:
        """Point the session at another agent and remember it as the default."""
        agents = self.config_manager.config.dialogflow.agents
        if key not in agents:
            print(f"Unknown agent '{key}'. Available: {', '.join(agents)}")
            return False
        session.set_agent_id(key)
        self.config_manager.persist("dialogflow", default_agent=key)
        print(f"Now talking to {agents[key].name}.")
        return True

    async def run(self) -> None:
        from dialog.quick_actions import QUICK_ACTIONS

        controller = self._build_controller()
        loop = asyncio.get_running_loop()

        print("Commands: /new  /quit  /agent <name>  " + "  ".join(f"/{a.id} {a.label}" for a in QUICK_ACTIONS))
        async with controller:
            await controller.greet()
            await controller.drain()
            self._print_new_messages(controller.state)

            while True:
                line = await loop.run_in_executor(None, input, "You: ")
                command = line.strip()
                if command == "/quit":
                    break
                if command == "/new":
                    await controller.new_conversation()
                    await controller.drain()
                    self._printed = 0
                    await controller.greet()
                    await controller.drain()
                    self._print_new_messages(controller.state)
                    continue

                if command.startswith("/agent"):
                    self.select_agent(controller.session, command[len("/agent"):].strip())
                    continue

                if command.startswith("/"):
                    turn = await controller.quick_action(command[1:])
                else:
                    turn = await controller.submit_text(line)
                if turn is not None:
                    await turn.wait()
                    self._print_new_messages(controller.state)

        await controller.resolver.close()
        if controller.synthesizer is not None:
            await controller.synthesizer.close()


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(prog="branchbot", description="Retail bank voice support agent")
    parser.add_argument("command", choices=["serve", "chat"], nargs="?", default="serve")
    parser.add_argument("--data-dir", type=Path, default=DATA_DIR)
    parser.add_argument("--mute", action="store_true", help="chat: do not speak replies")
    args = parser.parse_args()

    load_dotenv()

    logger.remove()
    logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")
    logger.add(args.data_dir / "branchbot.log", rotation="10 MB", retention="7 days", level="DEBUG")

    config_manager = ConfigManager(args.data_dir)

    if args.command == "serve":
        serve(config_manager)
        return

    try:
        asyncio.run(ConsoleChat(config_manager, speak=not args.mute).run())
    except (KeyboardInterrupt, EOFError):
        logger.info("Goodbye.")


if __name__ == "__main__":
    main()
