"""Tests for the heuristic and Ollama-backed content classifiers."""

import json

import httpx

from booknook.infrastructure.llm.services import HeuristicContentClassifier, LlamaContentClassifier

DISC_TEXT = (
    "Surrounded by Idiots. The DISC model sorts people into four colours: red, blue, "
    "green and yellow. Each personality type communicates differently."
)


def ollama_transport(content, status_code=200, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(status_code, json={"message": {"role": "assistant", "content": content}})

    return httpx.MockTransport(handler)


async def test_heuristic_recognises_registered_book():
    result = await HeuristicContentClassifier().classify(DISC_TEXT)

    assert result is not None
    assert result.title == "Surrounded by Idiots"
    assert result.confidence == 0.95
    assert "psychology" in result.tags


async def test_heuristic_returns_none_for_unknown_text():
    classifier = HeuristicContentClassifier()
    assert await classifier.classify("The tide came in slowly over the harbor wall.") is None
    assert await classifier.classify("") is None


async def test_llama_parses_model_answer():
    seen = []
    answer = json.dumps(
        {"title": "Dune", "author": "Frank Herbert", "description": "Desert epic.", "tags": ["sf"], "confidence": 0.9}
    )
    classifier = LlamaContentClassifier(model="llama3", transport=ollama_transport(answer, seen=seen))

    result = await classifier.classify("A beginning is the time for taking the most delicate care.")

    assert (result.title, result.author, result.confidence) == ("Dune", "Frank Herbert", 0.9)
    assert result.tags == ["sf"]
    assert seen[0]["model"] == "llama3"
    assert seen[0]["stream"] is False
    assert [m["role"] for m in seen[0]["messages"]] == ["system", "user"]


async def test_llama_extracts_json_wrapped_in_prose_and_clamps_confidence():
    answer = 'Sure! {"title": "Dune", "author": "Frank Herbert", "confidence": 3}'
    classifier = LlamaContentClassifier(transport=ollama_transport(answer))

    result = await classifier.classify("Arrakis.")

    assert result.confidence == 1.0
    assert result.tags == []


async def test_llama_falls_back_to_heuristic_on_server_error():
    classifier = LlamaContentClassifier(transport=ollama_transport("", status_code=500))

    result = await classifier.classify(DISC_TEXT)

    assert result.title == "Surrounded by Idiots"


async def test_llama_falls_back_when_answer_is_unusable():
    classifier = LlamaContentClassifier(transport=ollama_transport('{"title": "Only a title"}'))

    assert await classifier.classify("Nothing the heuristics know about.") is None
