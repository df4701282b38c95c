import asyncio
import os
import shutil

from dotenv import load_dotenv

from .config_service import ConfigService
from .logger_factory import configure_logging, get_logger
from .llm.fal_transcriber import FalTranscriber
from .llm.openrouter_client import OpenRouterClient
from .prompt_template_engine import SystemPromptTemplate
from .services import build_core, build_registry


def _seed_from_example(target: str, example: str) -> None:
    if not os.path.exists(target) and os.path.exists(example):
        shutil.copyfile(example, target)


async def main(config_path: str = "config.yaml") -> None:
    _seed_from_example(".env", ".env.example")
    load_dotenv()
    _seed_from_example(config_path, "config.example.yaml")

    config = ConfigService(config_path)
    configure_logging(
        level=config.log_level(),
        tz=None,
        lib_log_level=config.lib_log_level(),
        console_to_file=config.log_console(),
        error_file=config.log_errors(),
    )
    logger = get_logger("bot_app")
    bot_config = config.bot_config()

    orc_cfg = config.openrouter()
    prompt_template = SystemPromptTemplate(
        bot_config.system_prompt,
        bot_config.system_prompt_path or None,
        chat_command=bot_config.chat_command,
        models=bot_config.models,
        default_model=bot_config.default_model,
    )
    backend = OpenRouterClient(
        prompt_template=prompt_template,
        base_url=orc_cfg.get("base_url", "https://openrouter.ai/api/v1/chat/completions"),
        concurrency=int(orc_cfg.get("concurrency", 2)),
        timeout=bot_config.response_timeout_seconds,
        retry_attempts=int(orc_cfg.get("retry_attempts", 1)),
        x_title=orc_cfg.get("x_title", "chatrelay"),
    )
    transcriber = None
    if os.getenv("FAL_KEY"):
        transcriber = FalTranscriber(whisper_url=config.fal_whisper_url())
    else:
        logger.warning("FAL_KEY not set; voice messages will be rejected")

    core = build_core(bot_config, backend, transcriber)
    logger.info(
        f"models={len(core.catalog.models)} fallbacks={len(core.catalog.fallback_models())} "
        f"default={core.catalog.default_model.identifier} ttl_s={bot_config.session_ttl_seconds:g} "
        f"daily_limit={bot_config.daily_spend_limit:.2f}"
    )

    mode = config.bot_method()
    tasks: list = []
    client = None
    if mode in ("DISCORD", "BOTH"):
        token = os.getenv("DISCORD_TOKEN")
        if not token:
            raise RuntimeError("Missing DISCORD_TOKEN in environment")
        from .discord_client_adapter import DiscordClientAdapter
        from .discord_sender import DiscordSender

        # The sender needs the client and the client needs the registry
        client = DiscordClientAdapter(
            registry=None, intents_cfg=config.discord_intents(), logger=get_logger("Discord"), locks=core.locks
        )
        sender = DiscordSender(
            client,
            char_limit=config.discord_message_char_limit(),
            max_parts=config.max_response_messages(),
        )
        client.registry = build_registry(core, sender)
        tasks.append(client.start(token))
        logger.info("Discord bot starting")
    if mode in ("WEB", "BOTH"):
        import uvicorn
        from .http_app import create_app

        app = create_app(core, bearer_token=config.http_auth_bearer_token())
        server = uvicorn.Server(uvicorn.Config(app, host=config.html_host(), port=config.html_port(), log_level="info"))
        tasks.append(server.serve())
        logger.info(f"Web server: http://{config.html_host()}:{config.html_port()}")

    await core.start()
    try:
        await asyncio.gather(*tasks)
    finally:
        await core.close()
        await backend.aclose()
        if transcriber is not None:
            await transcriber.aclose()
        if client is not None and not client.is_closed():
            await client.close()


if __name__ == "__main__":
    asyncio.run(main())
