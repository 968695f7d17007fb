"""Tests for saving surveys and calculating unit results"""
from models import db, Survey, SURVEY_CALCULATED


def setup_unit_tree(build):
    it = build.iteration('current', closed=False)
    root = build.unit(it, 'root')
    team = build.unit(it, 'team', root)
    boss = build.role(build.person('Boss'), root, is_manager=True)
    worker = build.role(build.person('Worker'), team)
    other = build.role(build.person('Other'), root)
    return it, root, team, boss, worker, other


def calculate(client, role, unit, iteration):
    return client.post('/api/calculate', json={
        'personRoleId': role.id, 'orgUnitId': unit.id, 'iterationId': iteration.id
    })


def test_calculate_averages_unit_and_subordinates(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    build.survey(other, [2, 4, 6])
    build.survey(worker, [4, 6, 8])

    response = calculate(client, boss, root, it)
    assert response.status_code == 200
    data = response.get_json()

    result = data['calculationResult']
    assert result['filename'] == f'calculated_unit_{root.id}_iteration_{it.id}.json'
    stored = result['data']
    assert stored['survey_type'] == SURVEY_CALCULATED
    assert stored['survey_results'] == [3, 5, 7]
    voxel = stored['analysis_voxel']
    assert (voxel['x'], voxel['y'], voxel['z']) == (3, 5, 7)
    assert voxel['stats']['knowledge']['mean'] == 3.0
    assert len(stored['analysis_graphs']['familiarity']) == 71

    assert len(data['sourceFiles']) == 2
    assert {s['personRoleId'] for s in data['sourceFiles']} == {other.id, worker.id}
    assert all(s['voxel'] for s in data['sourceFiles'])


def test_calculate_only_uses_subtree(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    team_lead = build.role(build.person('Lead'), team, is_manager=True)
    build.survey(other, [8, 8, 8])
    build.survey(worker, [1, 3, 5])

    data = calculate(client, team_lead, team, it).get_json()
    assert data['calculationResult']['data']['survey_results'] == [1, 3, 5]
    assert len(data['sourceFiles']) == 1


def test_calculate_stores_ceiling_of_average(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    build.survey(other, [1, 2, 3, 4, 5, 6])
    build.survey(worker, [2, 2, 4, 4, 6, 7])

    stored = calculate(client, boss, root, it).get_json()['calculationResult']['data']
    assert stored['survey_results'] == [2, 2, 4, 4, 6, 7]
    # Statistics come from the un-rounded average
    assert stored['analysis_voxel']['stats']['knowledge']['mean'] == 1.75


def test_calculate_is_idempotent(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    build.survey(worker, [3, 4, 5])

    first = calculate(client, boss, root, it).get_json()['calculationResult']['data']
    second = calculate(client, boss, root, it).get_json()['calculationResult']['data']

    assert first['id'] == second['id']
    assert first['survey_results'] == second['survey_results']
    assert first['analysis_voxel'] == second['analysis_voxel']
    assert Survey.query.filter_by(survey_type=SURVEY_CALCULATED).count() == 1


def test_calculate_ignores_other_iterations(client, build):
    old = build.iteration('old')
    old_unit = build.unit(old, 'root')
    build.survey(build.role(build.person('Past'), old_unit), [8, 8, 8])

    it = build.iteration('current', closed=False)
    root = build.unit(it, 'root')
    boss = build.role(build.person('Boss'), root, is_manager=True)

    response = calculate(client, boss, root, it)
    assert response.status_code == 404


def test_calculate_without_surveys_is_not_found(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    response = calculate(client, boss, root, it)
    assert response.status_code == 404
    assert Survey.query.filter_by(survey_type=SURVEY_CALCULATED).count() == 0


def test_calculate_by_non_manager_is_forbidden(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    build.survey(worker, [1, 2, 3])
    response = calculate(client, worker, root, it)
    assert response.status_code == 403
    assert response.get_json()['success'] is False


def test_calculate_with_unknown_role(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    response = client.post('/api/calculate', json={'personRoleId': 999, 'orgUnitId': root.id, 'iterationId': it.id})
    assert response.status_code == 404


def test_calculate_requires_all_ids(client):
    assert client.post('/api/calculate', json={'personRoleId': 1}).status_code == 400


def test_save_survey_replaces_previous_answers(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    payload = {'person_role_id': worker.id, 'iteration_id': it.id,
               'question_set': 'questions_short.json', 'answers': [1, 2, 3, 4, 5, 6]}

    first = client.post('/api/surveys', json=payload)
    assert first.status_code == 201
    record = first.get_json()['record']
    assert record['org_unit_id'] == team.id
    assert record['analysis_voxel']['x'] == 2

    payload['answers'] = [6, 6, 6, 6, 6, 6]
    second = client.post('/api/surveys', json=payload).get_json()['record']
    assert second['id'] == record['id']
    assert Survey.query.count() == 1
    assert db.session.get(Survey, record['id']).survey_results == [6, 6, 6, 6, 6, 6]


def test_save_survey_resolves_role_from_person(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    response = client.post('/api/surveys', json={
        'person_id': worker.person_id, 'iteration_id': it.id,
        'question_set': 'questions_short.json', 'answers': [1, 1, 1, 1, 1, 1]
    })
    assert response.status_code == 201
    assert response.get_json()['record']['person_role_id'] == worker.id


def test_save_survey_rejects_bad_answers(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    base = {'person_role_id': worker.id, 'iteration_id': it.id, 'question_set': 'questions_short.json'}

    assert client.post('/api/surveys', json=dict(base, answers=[1, 2])).status_code == 400
    assert client.post('/api/surveys', json=dict(base, answers='1,2,3')).status_code == 400
    assert client.post('/api/surveys', json=dict(base, answers=[1, 'a', 3])).status_code == 400
    assert Survey.query.count() == 0


def test_list_and_summarize_surveys(client, build):
    it, root, team, boss, worker, other = setup_unit_tree(build)
    build.survey(worker, [1, 2, 3])
    build.survey(other, [1, 2, 3])

    rows = client.get(f'/api/surveys?iteration_id={it.id}').get_json()['rows']
    assert len(rows) == 2
    assert client.get('/api/surveys?iteration_id=999').get_json()['rows'] == []

    summary = client.get('/api/surveys/summary').get_json()['summary']
    assert summary == [{'iteration_id': it.id, 'count': 2}]
