from blindbox.models import db
from blindbox.models.ErrorLog import ErrorLog
from blindbox.models.NftInfo import NftInfo

from conftest import SIGNER_KEY, personal_sign


def seed_token(box, chain, token_id, account, box_type_id=1):
    box.nft_manager.upsert_minted_nft(token_id, account.address, box_type_id)
    chain.owners[token_id] = account.address


class TestPublicRoutes:

    def test_index_and_health(self, client):
        assert client.get('/').status_code == 200
        body = client.get('/health').get_json()
        assert body["status"] == "healthy"

    def test_metadata_token_id_validation(self, client):
        assert client.get('/metadata/abc').status_code == 400
        assert client.get('/metadata/0').status_code == 400
        assert client.get('/metadata/11').status_code == 400
        assert client.get('/metadata/5').status_code == 404

    def test_blind_box_metadata_is_served_raw(self, client, box, chain, owner, admin_headers):
        seed_token(box, chain, 2, owner, box_type_id=0)
        assert client.get('/metadata/2').status_code == 404

        response = client.post('/admin/blind-box-metadata', headers=admin_headers,
                               json={"boxTypeId": 0, "metadata": {"name": "Gold Box", "image": "ipfs://gold"}})
        assert response.status_code == 200
        assert client.get('/metadata/2').get_json() == {"name": "Gold Box", "image": "ipfs://gold"}

    def test_reveal_flow(self, client, box, chain, owner, admin_headers):
        seed_token(box, chain, 3, owner)
        client.post('/admin/origin-metadata', headers=admin_headers,
                    json={"originId": 101, "boxTypeId": 1, "metadata": {"name": "ROG #101"}})

        response = client.get('/metadata/reveal/message',
                              query_string={"tokenId": 3, "ownerAddress": owner.address.lower()})
        assert response.status_code == 200
        message = response.get_json()["data"]["message"]
        assert message == f"ROG Avatar: Reveal token 3 by {owner.address}"

        payload = {"message": message, "signature": personal_sign(owner, message)}
        response = client.post('/metadata/reveal/3', json=payload)
        assert response.status_code == 200
        assert response.get_json()["data"] == {"name": "ROG #101"}
        assert client.get('/metadata/3').get_json() == {"name": "ROG #101"}

        assert client.post('/metadata/reveal/3', json=payload).status_code == 400

    def test_reveal_errors(self, client, box, chain, owner, stranger):
        seed_token(box, chain, 4, owner)
        message = f"ROG Avatar: Reveal token 4 by {owner.address}"

        assert client.post('/metadata/reveal/4', json={"message": message}).status_code == 400
        response = client.post('/metadata/reveal/4',
                               json={"message": message, "signature": personal_sign(stranger, message)})
        assert response.status_code == 401
        response = client.post('/metadata/reveal/4',
                               json={"message": message + " ", "signature": personal_sign(owner, message)})
        assert response.status_code == 403

        # 池子为空
        response = client.post('/metadata/reveal/4',
                               json={"message": message, "signature": personal_sign(owner, message)})
        assert response.status_code == 500
        assert response.get_json()["status"] == "error"
        assert db.session.get(NftInfo, 4).origin_id == 0
        assert db.session.query(ErrorLog).filter_by(error_type="NoAvailableMetadataException").count() == 1

        chain.down = True
        response = client.post('/metadata/reveal/4',
                               json={"message": message, "signature": personal_sign(owner, message)})
        assert response.status_code == 503

    def test_data_corruption_is_logged(self, client, box, chain, owner):
        seed_token(box, chain, 5, owner)
        db.session.get(NftInfo, 5).origin_id = 999
        db.session.commit()
        assert client.get('/metadata/5').status_code == 500
        assert db.session.query(ErrorLog).filter_by(error_type="DataCorruptionException").count() == 1

    def test_stats_and_supply(self, client, box, chain, owner):
        seed_token(box, chain, 1, owner, box_type_id=1)
        seed_token(box, chain, 2, owner, box_type_id=3)
        chain.total_supply = 4

        stats = client.get('/api/stats').get_json()["data"]
        assert stats["totalNfts"] == 2
        assert stats["unrevealedNfts"] == 2

        supply = client.get('/api/nft').get_json()["data"]
        assert supply == {"totalSupply": 6, "maxSupply": 10}

        config = client.get('/api/mint/config').get_json()["data"]
        assert config["maxSupply"] == 10
        assert config["publicStartTime"] == "2025-10-07T08:00:00.000Z"

    def test_phase2_routes(self, client, box, owner, admin_headers):
        assert client.get(f'/api/phase2/{owner.address}/9').status_code == 400
        assert client.get('/api/phase2/0xabc/1').status_code == 400
        assert client.get(f'/api/phase2/{owner.address}/1').get_json()["data"]["isPhase2Holder"] is False
        assert client.get(f'/api/mint/soulbound/{owner.address}').status_code == 404

        client.post('/admin/phase2-holder', headers=admin_headers,
                    json={"userAddress": owner.address, "boxTypeId": 1, "tokenId": 8})
        assert client.get(f'/api/phase2/{owner.address}/1').get_json()["data"]["isPhase2Holder"] is True

        response = client.post('/admin/phase2-signatures', headers=admin_headers, json={})
        assert response.get_json()["data"]["signed"] == 1
        # 私钥不能出现在任何响应里
        assert SIGNER_KEY[2:] not in response.get_data(as_text=True)

        info = client.get(f'/api/mint/soulbound/{owner.address}').get_json()["data"]
        assert info["tokenId"] == 8
        assert info["signature"].startswith("0x")


class TestAdminRoutes:

    def test_admin_key_required(self, client):
        assert client.get('/admin/detailed-stats').status_code == 401
        assert client.get('/admin/detailed-stats', headers={"X-Admin-Key": "wrong"}).status_code == 403

    def test_detailed_stats(self, client, admin_headers):
        body = client.get('/admin/detailed-stats', headers=admin_headers).get_json()
        assert body["status"] == "success"
        assert body["data"]["totalNfts"] == 0
        assert body["data"]["originPool"] == []

    def test_batch_endpoints(self, client, owner, stranger, admin_headers):
        response = client.post('/admin/batch-origin-metadata', headers=admin_headers, json={
            "boxTypeId": 2,
            "metadataList": [{"originId": 1, "metadata": {"n": 1}}, {"originId": 2, "metadata": {"n": 2}}],
        })
        assert response.get_json()["data"]["created"] == 2

        response = client.post('/admin/batch-phase2-holders', headers=admin_headers, json={
            "holders": [{"userAddress": owner.address, "boxTypeId": 0}, {"userAddress": "bad", "boxTypeId": 0}],
        })
        assert response.get_json()["data"]["added"] == 1
        assert response.get_json()["data"]["skipped"] == 1

        assert client.post('/admin/origin-metadata', headers=admin_headers, json={}).status_code == 400

    def test_seed_and_sync_controls(self, client, chain, admin_headers):
        body = client.get('/admin/random-seed-status', headers=admin_headers).get_json()["data"]
        assert body["isRevealed"] is False

        chain.random_seed, chain.seed_revealed = 7, True
        body = client.post('/admin/sync-randomseed', headers=admin_headers).get_json()["data"]
        assert body == {"randomSeed": "7", "success": True}

        assert client.get('/admin/seed-monitor/status', headers=admin_headers).get_json()["data"]["isRunning"] is False

        chain.latest_block = 20
        response = client.post('/admin/sync/historical', headers=admin_headers, json={"fromBlock": 0, "toBlock": 20})
        assert response.get_json()["data"]["processed"] == 0
        assert client.post('/admin/sync/historical', headers=admin_headers,
                           json={"fromBlock": 30, "toBlock": 20}).status_code == 400

        sync = client.get('/admin/sync/status', headers=admin_headers).get_json()["data"]
        assert sync["lastProcessedBlock"] == 20
        assert sync["blocksBehind"] == 0
