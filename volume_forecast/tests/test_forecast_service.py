"""
Tests for the forecast run against an in-memory database.
"""
import threading
import unittest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from volume_forecast.models import (
    ForecastMonthly, HistoricMonthly, AuditEvent, AuditAction, ScenarioStatus
)
from volume_forecast.services import forecast_service
from volume_forecast.services.forecast_service import ForecastService, scenario_run_lock
from volume_forecast.exceptions import (
    ScenarioNotFoundError, InsufficientHistoryError, MissingPriorForecastError,
    RunInProgressError
)
from volume_forecast.tests.fixtures import (
    make_session, add_channel_product, add_history, add_scenario, add_variable,
    assign, add_coefficient, add_override, add_forecast_output
)

def record_snapshot(records):
    return [
        record.to_dict()
        for record in sorted(records, key=lambda r: (r.channel_product_key, r.month_index))
    ]

class TestDirectStrategy(unittest.TestCase):

    def setUp(self):
        self.session = make_session()
        add_channel_product(self.session, 'SKU1')
        add_history(self.session, 'TT_SKU1', 2024, [120.0] * 12)
        self.scenario = add_scenario(self.session, 'Budget FY2025', 2025)
        self.service = ForecastService(self.session)

    def tearDown(self):
        self.session.close()

    def test_flat_history_forecasts_flat_volume(self):
        report = self.service.run_forecast(self.scenario.id)

        self.assertEqual(len(report.records), 12)
        for record in report.records:
            self.assertAlmostEqual(record.base_volume_used, 120.0)
            self.assertAlmostEqual(record.forecast_volume, 120.0)
            self.assertAlmostEqual(record.forecast_volume_secondary, 1080.0)
            self.assertFalse(record.is_discontinued)
            self.assertEqual(record.factors_applied, [])

        self.assertAlmostEqual(report.totals['forecast_volume'], 1440.0)
        self.assertAlmostEqual(report.totals['base_volume'], 1440.0)
        self.assertAlmostEqual(report.totals['growth_percent'], 0.0)
        self.assertEqual(report.metadata['strategy_used'], 'HISTORIC_PRIOR_YEAR')
        self.assertEqual(report.metadata['warnings'], [])
        self.assertIsNone(report.metadata['comparison_scenario_name'])

    def test_output_is_persisted_and_audited(self):
        self.service.run_forecast(self.scenario.id)

        self.assertEqual(
            self.session.query(ForecastMonthly).filter_by(scenario_id=self.scenario.id).count(), 12
        )
        events = self.session.query(AuditEvent).all()
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].action, AuditAction.GENERATE)
        self.assertEqual(events[0].entity_id, str(self.scenario.id))

    def test_rerun_replaces_output_with_identical_records(self):
        first = record_snapshot(self.service.run_forecast(self.scenario.id).records)
        second = record_snapshot(self.service.run_forecast(self.scenario.id).records)

        self.assertEqual(first, second)
        self.assertEqual(record_snapshot(self.service.get_forecast(self.scenario.id)), second)
        self.assertEqual(self.session.query(ForecastMonthly).count(), 12)

    def test_rerun_keeps_other_scenarios_output(self):
        other = add_scenario(self.session, 'Stretch FY2025', 2025)
        self.service.run_forecast(other.id)
        self.service.run_forecast(self.scenario.id)
        self.service.run_forecast(self.scenario.id)

        self.assertEqual(self.session.query(ForecastMonthly).filter_by(scenario_id=other.id).count(), 12)

    def test_incomplete_history_warns(self):
        add_channel_product(self.session, 'SKU2')
        add_history(self.session, 'TT_SKU2', 2024, {1: 60.0, 2: 60.0})

        report = self.service.run_forecast(self.scenario.id)

        self.assertEqual(len(report.metadata['warnings']), 1)
        self.assertIn('TT_SKU2', report.metadata['warnings'][0])
        self.assertIn('2/12', report.metadata['warnings'][0])
        sku2 = [r for r in report.records if r.channel_product_key == 'TT_SKU2']
        self.assertAlmostEqual(sku2[0].forecast_volume, 10.0)

    def test_key_without_history_gets_zero_base_silently(self):
        add_channel_product(self.session, 'SKU3')

        report = self.service.run_forecast(self.scenario.id)

        sku3 = [r for r in report.records if r.channel_product_key == 'TT_SKU3']
        self.assertEqual(len(sku3), 12)
        self.assertTrue(all(r.forecast_volume == 0.0 for r in sku3))
        self.assertEqual(report.metadata['warnings'], [])

    def test_inactive_channel_products_and_products_are_skipped(self):
        add_channel_product(self.session, 'SKU4', active=False)
        add_channel_product(self.session, 'SKU5', product_active=False)
        add_history(self.session, 'TT_SKU4', 2024, [10.0] * 12)
        add_history(self.session, 'TT_SKU5', 2024, [10.0] * 12)

        report = self.service.run_forecast(self.scenario.id)

        self.assertEqual({r.channel_product_key for r in report.records}, {'TT_SKU1'})
        self.assertAlmostEqual(report.totals['base_volume'], 1440.0)

    def test_locked_scenario_can_still_run(self):
        self.scenario.status = ScenarioStatus.LOCKED
        report = self.service.run_forecast(self.scenario.id)
        self.assertEqual(len(report.records), 12)

    def test_report_to_dict(self):
        result = self.service.run_forecast(self.scenario.id).to_dict(include_records=True)
        self.assertEqual(result['scenario_id'], self.scenario.id)
        self.assertEqual(len(result['records']), 12)
        self.assertEqual(len(result['metadata']['monthly_profile']), 12)

class TestCoefficientsAndOverrides(unittest.TestCase):

    def setUp(self):
        self.session = make_session()
        add_channel_product(self.session, 'SKU1')
        add_history(self.session, 'TT_SKU1', 2024, [100.0] * 12)
        self.scenario = add_scenario(self.session, 'Budget FY2025', 2025)
        add_variable(self.session, 'SEASON', ['HIGH', 'LOW'])
        self.service = ForecastService(self.session)

    def tearDown(self):
        self.session.close()

    def test_coefficient_applies_to_its_month_only(self):
        assign(self.session, 'SKU1', 'SEASON', 'HIGH')
        add_coefficient(self.session, self.scenario, 'SEASON', 'HIGH', 1, 1.2)
        for month_index in range(2, 13):
            add_coefficient(self.session, self.scenario, 'SEASON', 'HIGH', month_index, 1.0)

        report = self.service.run_forecast(self.scenario.id)
        by_month = {r.month_index: r for r in report.records}

        self.assertAlmostEqual(by_month[1].forecast_volume, 120.0)
        for month_index in range(2, 13):
            self.assertAlmostEqual(by_month[month_index].forecast_volume, 100.0)
        self.assertEqual(by_month[1].factors_applied, [
            {'variable_code': 'SEASON', 'category_code': 'HIGH', 'value': 1.2, 'is_missing': False}
        ])
        self.assertAlmostEqual(report.totals['growth_percent'], 20.0 / 1200.0 * 100.0)

    def test_coefficients_of_other_scenarios_are_ignored(self):
        assign(self.session, 'SKU1', 'SEASON', 'HIGH')
        other = add_scenario(self.session, 'Other FY2025', 2025)
        add_coefficient(self.session, other, 'SEASON', 'HIGH', 1, 2.0)

        report = self.service.run_forecast(self.scenario.id)

        self.assertAlmostEqual(report.totals['forecast_volume'], 1200.0)

    def test_missing_assignment_is_flagged_not_fatal(self):
        report = self.service.run_forecast(self.scenario.id)

        self.assertEqual(len(report.records), 12)
        for record in report.records:
            self.assertAlmostEqual(record.forecast_volume, 100.0)
            self.assertEqual(record.factors_applied, [
                {'variable_code': 'SEASON', 'category_code': None, 'value': 1.0, 'is_missing': True}
            ])

    def test_inactive_variables_are_not_applied(self):
        add_variable(self.session, 'PROMO', ['ON'], active=False)
        assign(self.session, 'SKU1', 'PROMO', 'ON')
        add_coefficient(self.session, self.scenario, 'PROMO', 'ON', 1, 3.0)

        report = self.service.run_forecast(self.scenario.id)

        self.assertEqual([f['variable_code'] for f in report.records[0].factors_applied], ['SEASON'])
        self.assertAlmostEqual(report.totals['forecast_volume'], 1200.0)

    def test_override_takes_precedence_over_history(self):
        assign(self.session, 'SKU1', 'SEASON', 'HIGH')
        add_coefficient(self.session, self.scenario, 'SEASON', 'HIGH', 3, 1.5)
        add_override(self.session, self.scenario, 'TT_SKU1', 3, 40.0)

        first = {r.month_index: r.forecast_volume for r in self.service.run_forecast(self.scenario.id).records}

        for row in self.session.query(HistoricMonthly).filter_by(fiscal_year=2024).all():
            row.volume = row.volume * 3

        second = self.service.run_forecast(self.scenario.id).records
        by_month = {r.month_index: r for r in second}

        self.assertAlmostEqual(first[3], 60.0)
        self.assertAlmostEqual(by_month[3].base_volume_used, 40.0)
        self.assertAlmostEqual(by_month[3].forecast_volume, 60.0)
        self.assertNotAlmostEqual(by_month[4].forecast_volume, first[4])

    def test_override_for_other_fiscal_year_is_ignored(self):
        add_override(self.session, self.scenario, 'TT_SKU1', 3, 40.0, fiscal_year=2026)

        report = self.service.run_forecast(self.scenario.id)

        self.assertAlmostEqual(report.totals['forecast_volume'], 1200.0)

class TestDiscontinuation(unittest.TestCase):

    def setUp(self):
        self.session = make_session()
        self.scenario = add_scenario(self.session, 'Budget FY2025', 2025)
        self.service = ForecastService(self.session)

    def tearDown(self):
        self.session.close()

    def _run_with_marker(self, marker):
        add_channel_product(self.session, 'SKU1', discontinue=marker)
        add_history(self.session, 'TT_SKU1', 2024, [100.0] * 12)
        add_override(self.session, self.scenario, 'TT_SKU1', 10, 250.0)
        return {r.month_index: r for r in self.service.run_forecast(self.scenario.id).records}

    def test_months_after_marker_are_zero(self):
        by_month = self._run_with_marker((2025, 6))

        for month_index in range(1, 7):
            self.assertAlmostEqual(by_month[month_index].forecast_volume, 100.0)
            self.assertFalse(by_month[month_index].is_discontinued)
        for month_index in range(7, 13):
            self.assertEqual(by_month[month_index].forecast_volume, 0.0)
            self.assertTrue(by_month[month_index].is_discontinued)

    def test_marker_in_earlier_year_zeroes_every_month(self):
        by_month = self._run_with_marker((2024, 12))
        self.assertTrue(all(r.forecast_volume == 0.0 and r.is_discontinued for r in by_month.values()))

    def test_marker_in_later_year_has_no_effect(self):
        by_month = self._run_with_marker((2026, 1))
        self.assertFalse(any(r.is_discontinued for r in by_month.values()))
        self.assertAlmostEqual(by_month[10].forecast_volume, 250.0)

    def test_half_set_marker_warns_and_is_ignored(self):
        channel_product = add_channel_product(self.session, 'SKU1')
        channel_product.discontinue_fiscal_year = 2024
        add_history(self.session, 'TT_SKU1', 2024, [100.0] * 12)

        report = self.service.run_forecast(self.scenario.id)

        self.assertFalse(any(r.is_discontinued for r in report.records))
        self.assertEqual(len(report.metadata['warnings']), 1)
        self.assertIn('TT_SKU1', report.metadata['warnings'][0])

class TestWeightedStrategy(unittest.TestCase):

    def setUp(self):
        self.session = make_session()
        add_channel_product(self.session, 'SKU1')
        add_history(self.session, 'TT_SKU1', 2023, [100.0] * 12)
        self.service = ForecastService(self.session)

    def tearDown(self):
        self.session.close()

    def test_blends_history_and_prior_forecast(self):
        prior = add_scenario(self.session, 'Budget FY2024', 2024)
        add_forecast_output(self.session, prior, 'TT_SKU1', 2024, [1600.0 / 12] * 12)
        current = add_scenario(self.session, 'Budget FY2025', 2025, source=prior)

        report = self.service.run_forecast(current.id)

        for record in report.records:
            self.assertAlmostEqual(record.base_volume_used, 108.333333, places=5)
        self.assertAlmostEqual(report.totals['base_volume'], 1300.0)
        self.assertAlmostEqual(report.totals['forecast_volume'], 1300.0)
        self.assertEqual(report.metadata['strategy_used'], 'WEIGHTED_TWO_YEAR')
        self.assertEqual(report.metadata['comparison_scenario_name'], 'Budget FY2024')
        self.assertIn('Budget FY2024', report.metadata['strategy_details'])

    def test_prior_output_is_untouched(self):
        prior = add_scenario(self.session, 'Budget FY2024', 2024)
        add_forecast_output(self.session, prior, 'TT_SKU1', 2024, [100.0] * 12)
        current = add_scenario(self.session, 'Budget FY2025', 2025)

        self.service.run_forecast(current.id)

        self.assertEqual(self.session.query(ForecastMonthly).filter_by(scenario_id=prior.id).count(), 12)

    def test_incomplete_prior_forecast_warns(self):
        prior = add_scenario(self.session, 'Budget FY2024', 2024)
        add_forecast_output(self.session, prior, 'TT_SKU1', 2024, [100.0] * 6)
        current = add_scenario(self.session, 'Budget FY2025', 2025)

        report = self.service.run_forecast(current.id)

        self.assertEqual(len(report.metadata['warnings']), 1)
        self.assertIn('FY2024 forecast', report.metadata['warnings'][0])

    def test_missing_equivalent_scenario_is_fatal(self):
        current = add_scenario(self.session, 'Budget FY2025', 2025)

        with self.assertRaises(MissingPriorForecastError) as ctx:
            self.service.run_forecast(current.id)

        self.assertEqual(ctx.exception.code, 'MISSING_PRIOR_FORECAST')
        self.assertIn('FY2024', ctx.exception.message)
        self.assertEqual(self.session.query(ForecastMonthly).count(), 0)
        self.assertEqual(self.session.query(AuditEvent).count(), 0)

    def test_equivalent_without_output_is_fatal(self):
        add_scenario(self.session, 'Budget FY2024', 2024)
        current = add_scenario(self.session, 'Budget FY2025', 2025)

        with self.assertRaises(MissingPriorForecastError) as ctx:
            self.service.run_forecast(current.id)

        self.assertIn('Budget FY2024', ctx.exception.message)
        self.assertEqual(ctx.exception.details['scenario_name'], 'Budget FY2024')

class TestFatalConditions(unittest.TestCase):

    def setUp(self):
        self.session = make_session()
        add_channel_product(self.session, 'SKU1')
        self.service = ForecastService(self.session)

    def tearDown(self):
        self.session.close()

    def test_no_history_for_two_prior_years(self):
        scenario = add_scenario(self.session, 'Budget FY2025', 2025)
        add_history(self.session, 'TT_SKU1', 2022, [100.0] * 12)

        with self.assertRaises(InsufficientHistoryError) as ctx:
            self.service.run_forecast(scenario.id)

        self.assertEqual(ctx.exception.code, 'INSUFFICIENT_HISTORY')
        self.assertIn('FY2024', ctx.exception.message)
        self.assertIn('FY2023', ctx.exception.message)
        self.assertEqual(self.session.query(ForecastMonthly).count(), 0)
        self.assertEqual(self.session.query(AuditEvent).count(), 0)

    def test_failed_rerun_keeps_previous_output(self):
        scenario = add_scenario(self.session, 'Budget FY2025', 2025)
        add_forecast_output(self.session, scenario, 'TT_SKU1', 2025, [5.0] * 12)

        with self.assertRaises(InsufficientHistoryError):
            self.service.run_forecast(scenario.id)

        self.assertEqual(self.session.query(ForecastMonthly).count(), 12)

    def test_unknown_scenario(self):
        with self.assertRaises(ScenarioNotFoundError) as ctx:
            self.service.run_forecast(999)
        self.assertEqual(ctx.exception.code, 'SCENARIO_NOT_FOUND')
        self.assertEqual(str(ctx.exception), '[SCENARIO_NOT_FOUND] Scenario 999 not found')

    @patch('volume_forecast.services.forecast_service.log_manager')
    def test_failure_is_logged_and_run_closed(self, mock_log_manager):
        with self.assertRaises(ScenarioNotFoundError):
            self.service.run_forecast(999)

        mock_log_manager.log_exception.assert_called_once()
        _, kwargs = mock_log_manager.run_end_log.call_args
        self.assertFalse(kwargs['success'])
        self.assertEqual(kwargs['result_info']['code'], 'SCENARIO_NOT_FOUND')

    def test_concurrent_run_for_same_scenario_is_rejected(self):
        scenario = add_scenario(self.session, 'Budget FY2025', 2025)
        add_history(self.session, 'TT_SKU1', 2024, [1.0] * 12)

        with scenario_run_lock(scenario.id):
            with self.assertRaises(RunInProgressError):
                self.service.run_forecast(scenario.id)

        self.assertEqual(len(self.service.run_forecast(scenario.id).records), 12)

class TestRunLock(unittest.TestCase):

    def setUp(self):
        self.session = make_session()
        add_channel_product(self.session, 'SKU1')
        add_history(self.session, 'TT_SKU1', 2024, [10.0] * 12)
        self.scenario = add_scenario(self.session, 'Budget FY2025', 2025)
        self.service = ForecastService(self.session)

    def tearDown(self):
        self.session.close()

    def _try_lock_from_other_thread(self):
        outcome = []

        def attempt():
            try:
                with scenario_run_lock(self.scenario.id):
                    outcome.append('acquired')
            except RunInProgressError:
                outcome.append('in progress')

        thread = threading.Thread(target=attempt)
        thread.start()
        thread.join()
        return outcome

    def test_lock_is_held_until_commit_completes(self):
        seen_during_commit = []

        def commit():
            seen_during_commit.extend(self._try_lock_from_other_thread())

        with patch.object(self.session, 'commit', side_effect=commit):
            self.service.run_forecast(self.scenario.id, commit=True)

        self.assertEqual(seen_during_commit, ['in progress'])
        self.assertEqual(self._try_lock_from_other_thread(), ['acquired'])

    def test_commit_leaves_no_open_transaction(self):
        report = self.service.run_forecast(self.scenario.id, commit=True)

        self.assertFalse(self.session.in_transaction())
        self.assertEqual(self.session.query(ForecastMonthly).count(), 12)
        self.assertAlmostEqual(report.totals['forecast_volume'], 120.0)

    def test_without_commit_transaction_stays_open(self):
        self.service.run_forecast(self.scenario.id)
        self.assertTrue(self.session.in_transaction())

    def test_finished_runs_leave_no_lock_state(self):
        self.service.run_forecast(self.scenario.id)
        with self.assertRaises(ScenarioNotFoundError):
            self.service.run_forecast(999)

        self.assertEqual(forecast_service._active_runs, set())

    @patch('volume_forecast.services.forecast_service.log_manager')
    def test_database_failure_closes_run_log(self, mock_log_manager):
        with patch.object(self.service.base_volume_resolver, 'resolve',
                          side_effect=OperationalError('SELECT', {}, Exception('disk I/O error'))):
            with self.assertRaises(OperationalError):
                self.service.run_forecast(self.scenario.id)

        mock_log_manager.log_exception.assert_called_once()
        _, kwargs = mock_log_manager.run_end_log.call_args
        self.assertFalse(kwargs['success'])
        self.assertIn('OperationalError', kwargs['result_info']['error'])
        self.assertEqual(forecast_service._active_runs, set())

if __name__ == '__main__':
    unittest.main()
