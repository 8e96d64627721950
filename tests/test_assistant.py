from __future__ import annotations

import asyncio
from types import SimpleNamespace

from alcancia.actions import DUPLICATE_TEXT
from alcancia.assistant import OFFLINE_REPLY, Assistant
from alcancia.protocol import CREATE_ACCOUNT
from alcancia.service import NO_ACCOUNT_TEXT


class _FakeLLM:
    def __init__(self, *replies, error=None):
        self.replies = list(replies)
        self.error = error
        self.requests = []
        self.closed = False
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        content = self.replies.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    async def close(self):
        self.closed = True


def _assistant(settings, clock, gateway_factory, llm=None):
    return Assistant(settings, gateway=gateway_factory(settings), llm_client=llm, clock=clock)


def test_commands_do_not_reach_the_model(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM("no debería usarse")
    assistant = _assistant(settings, clock, gateway_factory, llm)

    asyncio.run(assistant.handle_message(make_message("saldo"), recorder))

    assert llm.requests == []
    assert recorder.texts == [NO_ACCOUNT_TEXT]


def test_small_talk_goes_to_the_persona(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM("¡Hola, mijo! ¿Cómo va ese ahorro?")
    assistant = _assistant(settings, clock, gateway_factory, llm)

    asyncio.run(assistant.handle_message(make_message("hola don jaimito"), recorder))

    assert recorder.texts == ["¡Hola, mijo! ¿Cómo va ese ahorro?"]
    request = llm.requests[0]
    assert request["model"] == settings.model
    system = request["messages"][0]
    assert system["role"] == "system"
    assert "Don Jaimito" in system["content"]
    assert "todavía no tiene alcancía" in system["content"]
    assert request["messages"][-1] == {"role": "user", "content": "hola don jaimito"}


def test_history_is_replayed_per_room(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM("primera", "segunda")
    assistant = _assistant(settings, clock, gateway_factory, llm)

    asyncio.run(assistant.handle_message(make_message("hola"), recorder))
    asyncio.run(assistant.handle_message(make_message("¿qué tal?"), recorder))

    roles = [item["role"] for item in llm.requests[1]["messages"]]
    assert roles == ["system", "user", "assistant", "user"]


def test_model_directive_runs_the_action(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM('Claro que sí, vamos a abrirla. [[alcancia:{"action":"create"}]]')
    assistant = _assistant(settings, clock, gateway_factory, llm)

    asyncio.run(assistant.handle_message(make_message("ábreme una cosa para guardar", message_id="m:1"), recorder))

    account = assistant.store.get("u1")
    assert account is not None
    assert recorder.texts[0] == "Claro que sí, vamos a abrirla."
    assert recorder.texts[1].endswith(account.account_address_hex)
    assert "[[alcancia" not in " ".join(recorder.texts)


def test_directive_shares_guard_with_router(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM('Listo. [[alcancia:{"action":"create"}]]')
    assistant = _assistant(settings, clock, gateway_factory, llm)
    message = make_message("crear alcancía", message_id="m:2")

    asyncio.run(assistant.handle_message(message, recorder))
    replay = asyncio.run(assistant._execute_account_directive({"action": "create"}, message, recorder))

    assert replay.text == DUPLICATE_TEXT
    assert len(assistant.store) == 1
    assert len(assistant.gateway.deploy_calls) == 1
    assert llm.requests == []


def test_unknown_or_broken_directive_is_ignored(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM('Hmm. [[alcancia:{"action":"hack"}]]', "Ok. [[alcancia:{roto}]]")
    assistant = _assistant(settings, clock, gateway_factory, llm)

    asyncio.run(assistant.handle_message(make_message("uno"), recorder))
    asyncio.run(assistant.handle_message(make_message("dos"), recorder))

    assert recorder.texts == ["Hmm.", "Ok."]
    assert len(assistant.store) == 0


def test_model_failure_sends_offline_reply(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM(error=RuntimeError("rate limited"))
    assistant = _assistant(settings, clock, gateway_factory, llm)

    asyncio.run(assistant.handle_message(make_message("hola"), recorder))
    assert recorder.texts == [OFFLINE_REPLY]


def test_without_model_small_talk_is_silent(settings, clock, gateway_factory, recorder, make_message):
    assistant = _assistant(settings, clock, gateway_factory)
    asyncio.run(assistant.handle_message(make_message("hola"), recorder))
    asyncio.run(assistant.handle_message(make_message("   "), recorder))
    assert recorder.replies == []


def test_other_sources_are_not_answered(settings, clock, gateway_factory, recorder, make_message):
    llm = _FakeLLM("hola")
    assistant = _assistant(settings, clock, gateway_factory, llm)
    asyncio.run(assistant.handle_message(make_message("crear alcancía", source="discord"), recorder))

    assert recorder.replies == []
    assert llm.requests == []
    assert len(assistant.store) == 0


def test_prompt_mentions_address_but_never_the_key(settings, clock, gateway_factory, make_message):
    assistant = _assistant(settings, clock, gateway_factory)
    account = assistant.store.ensure("u1")

    prompt = assistant._compose_system_prompt(make_message("hola"))
    assert account.account_address_hex in prompt
    assert account.private_key_hex not in prompt


def test_actions_are_registered(settings, clock, gateway_factory):
    assistant = _assistant(settings, clock, gateway_factory)
    assert CREATE_ACCOUNT in assistant.registry


def test_close_releases_clients(settings, clock, gateway_factory):
    llm = _FakeLLM()
    assistant = _assistant(settings, clock, gateway_factory, llm)
    asyncio.run(assistant.close())
    assert llm.closed
    assert assistant.gateway.closed
