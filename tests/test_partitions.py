import json

import pytest

from listing_crawler.partitions import Partition, filter_partitions, load_partitions


def write_json(tmp_path, data):
    path = tmp_path / "partitions.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_objects(tmp_path):
    path = write_json(
        tmp_path,
        [
            {"id": "oh", "name": "Ohio", "url": "https://shows.example.com/ohio-car-events/"},
            {"id": "tx", "name": "Texas", "url": "https://shows.example.com/texas-car-events/"},
        ],
    )
    partitions = load_partitions(path)
    assert [p.id for p in partitions] == ["oh", "tx"]
    assert partitions[1].name == "Texas"


def test_load_bare_urls_derives_names(tmp_path):
    path = write_json(tmp_path, ["https://shows.example.com/new-york-car-events/"])
    [partition] = load_partitions(path)
    assert partition == Partition(
        id="new-york", name="New York", url="https://shows.example.com/new-york-car-events/"
    )


def test_load_bootstrap_shape_with_base_url(tmp_path):
    path = write_json(
        tmp_path,
        {
            "baseUrl": "https://shows.example.com",
            "stateCarShowLinks": [
                {"name": "Ohio", "regions": [{"url": "/ohio-car-events/"}, {"url": "/ohio-north/"}]},
                {"link": "/maine-car-events/"},
            ],
        },
    )
    partitions = load_partitions(path)
    assert [p.url for p in partitions] == [
        "https://shows.example.com/ohio-car-events/",
        "https://shows.example.com/maine-car-events/",
    ]
    assert [p.id for p in partitions] == ["ohio", "maine"]


def test_duplicate_ids_keep_first(tmp_path):
    path = write_json(
        tmp_path,
        {"partitions": [
            {"id": "oh", "url": "https://a.example/ohio/"},
            {"id": "oh", "url": "https://b.example/ohio/"},
        ]},
    )
    partitions = load_partitions(path)
    assert len(partitions) == 1
    assert partitions[0].url == "https://a.example/ohio/"


def test_entry_without_url_is_rejected(tmp_path):
    path = write_json(tmp_path, [{"name": "Nowhere"}])
    with pytest.raises(ValueError):
        load_partitions(path)


def test_unexpected_shape_is_rejected(tmp_path):
    path = write_json(tmp_path, {"states": []})
    with pytest.raises(ValueError):
        load_partitions(path)


def test_filter_partitions():
    partitions = [
        Partition(id="new-york", name="New York", url="https://x.example/ny/"),
        Partition(id="ohio", name="Ohio", url="https://x.example/oh/"),
        Partition(id="york-pa", name="York", url="https://x.example/york/"),
    ]
    assert [p.id for p in filter_partitions(partitions, ["YORK"])] == ["new-york", "york-pa"]
    assert filter_partitions(partitions, []) == partitions
