from nearby_places.src.image_scoring import ImageCandidate, score_image, select_best_image


def test_score_is_clamped_to_the_percentage_range():
    large = ImageCandidate("https://upload.wikimedia.org/1280px-Tower.jpg", "wikipedia", 1280, 853)
    tiny = ImageCandidate("http://img.example/thumb/small.jpg", "placeholder", 100, 1000)

    assert score_image(large) == 100
    assert score_image(tiny) == 0


def test_source_resolution_and_url_signals():
    assert score_image(ImageCandidate("https://img.example/a.jpg", "somewhere")) == 42
    assert score_image(ImageCandidate("https://img.example/a.jpg", "opentripmap")) == 62
    assert score_image(ImageCandidate("https://img.example/a.jpg", "opentripmap", 900, 600)) == 72
    assert score_image(ImageCandidate("https://img.example/a.jpg", "opentripmap", 300, 1000)) == 37
    assert score_image(ImageCandidate("", "wikipedia")) == 0


def test_select_best_image():
    wiki_thumb = ImageCandidate("https://upload.wikimedia.org/thumb/tower.jpg", "wikipedia", 320, 240)
    wikidata = ImageCandidate("https://upload.wikimedia.org/wikipedia/commons/a/ab/Tower.jpg", "wikidata")
    otm = ImageCandidate("http://otm.example/tower.jpg", "opentripmap")

    assert select_best_image([otm, wiki_thumb, wikidata]) is wikidata
    assert select_best_image([otm, ImageCandidate("", "user")]) is otm
    assert select_best_image([]) is None
