import pytest

from drafts import Draft, Reference
from sources import NewsItem


@pytest.fixture
def news_item() -> NewsItem:
    return NewsItem(
        title="『ハム工場シミュレーター』発表",
        link="https://example.com/news/1",
        source_name="AUTOMATON",
        summary="狂気のハム工場ゲームが発表された。",
    )


@pytest.fixture
def draft() -> Draft:
    return Draft(
        title="Ham Factory Simulator announced",
        excerpt="A strange factory game appears.",
        content="<p>intro</p><h2>What is it?</h2><p>body</p><h2>Highlights</h2><p>more</p>",
        tags=["Steam", "Indie"],
        references=[Reference(title="Official site", url="https://ham.example.com")],
        slug="ham-factory-simulator-announced",
    )
