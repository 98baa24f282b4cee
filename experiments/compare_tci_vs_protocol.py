"""
Effect-site TCI vs Bolus + Continuous Protocol
==============================================

Simulate a patient population under two dosing strategies and compare how
closely each keeps the effect-site concentration at target:

1. Effect-site TCI towards a constant target
2. Open-loop bolus + continuous infusion, with the rate chosen by the
   protocol engine so that Ce reaches target at the target time

Outputs (in a timestamped directory under --log_dir):
    - config.yaml: settings used
    - tracking.csv: Varvel metrics per patient and strategy
    - events.csv: clinical events per patient and strategy
    - figures/: population Ce plots and the first patient's trajectories

Usage:
    # Default population
    python experiments/compare_tci_vs_protocol.py

    # Larger population with a custom configuration
    python experiments/compare_tci_vs_protocol.py --n_patients 100 --config config/simulation.yaml
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
from datetime import datetime

import pandas as pd
import yaml

from remitci.dosing import Bolus, ConstantRate, DosingSchedule
from remitci.simulation import (
    Simulator,
    SimulationRequest,
    run_batch,
    create_patient_population,
)
from remitci.utils import configure_logging, get_logger, log_config
from remitci.utils.config import load_config
from remitci.visualization import plot_trajectory, plot_population

logger = get_logger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description='Compare effect-site TCI with a bolus + continuous protocol')

    # Population
    parser.add_argument('--n_patients', type=int, default=20)
    parser.add_argument('--seed', type=int, default=42)

    # Dosing
    parser.add_argument('--bolus_mg_kg', type=float, default=0.1,
                        help='Induction bolus of the open-loop protocol (mg/kg)')
    parser.add_argument('--duration', type=float, default=120.0,
                        help='Simulated time (min)')

    # Evaluation
    parser.add_argument('--eval_start', type=float, default=10.0,
                        help='Start of the tracking window (min)')

    # Directories
    parser.add_argument('--config', type=str, default=None,
                        help='YAML configuration (bundled defaults if omitted)')
    parser.add_argument('--log_dir', type=str, default='logs')
    parser.add_argument('--workers', type=int, default=None)

    return parser.parse_args()


def build_protocol(simulator: Simulator, bolus_mg_kg: float, duration: float) -> DosingSchedule:
    """Bolus plus the optimised continuous rate for one patient."""
    weight = simulator.covariates.weight
    bolus_mg = bolus_mg_kg * weight
    result = simulator.optimize_protocol(bolus_mg)
    logger.info(
        "%s: bolus %.2f mg, rate %.2f mg/kg/h (Ce %.3f at %.0f min)",
        simulator.covariates.patient_id, bolus_mg, result.rate_mg_kg_h,
        result.predicted_ce, result.target_time,
    )
    return DosingSchedule([
        Bolus(0.0, bolus_mg),
        ConstantRate.from_mg_kg_h(result.rate_mg_kg_h, 0.0, duration, weight),
    ])


def main():
    args = parse_args()

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    log_dir = Path(args.log_dir) / f"tci_vs_protocol_{timestamp}"
    figure_dir = log_dir / "figures"
    figure_dir.mkdir(parents=True, exist_ok=True)

    config = load_config(args.config)
    configure_logging(config.logging, log_dir=log_dir,
                      run_name=config.logging.get('run_name') or 'compare')

    settings = config.to_dict()
    settings['experiment'] = vars(args)
    log_config(logger, settings, "Experiment settings")
    with open(log_dir / "config.yaml", 'w') as f:
        yaml.dump(settings, f)

    target = config.protocol.target_ce
    patients = create_patient_population(args.n_patients, seed=args.seed)

    print(f"\n{'='*70}")
    print("EFFECT-SITE TCI vs BOLUS + CONTINUOUS PROTOCOL")
    print(f"{'='*70}")
    print(f"Patients: {len(patients)}")
    print(f"Target Ce: {target} µg/mL")
    print(f"Duration: {args.duration} min")
    print(f"Output: {log_dir}")
    print(f"{'='*70}\n")

    requests = []
    for patient in patients:
        simulator = Simulator(patient, config)
        schedule = build_protocol(simulator, args.bolus_mg_kg, args.duration)
        requests.append(SimulationRequest(patient, args.duration, schedule=schedule,
                                          name=f"{patient.patient_id}-protocol"))
        requests.append(SimulationRequest(patient, args.duration, profile=target,
                                          name=f"{patient.patient_id}-tci"))

    results = run_batch(requests, config=config, max_workers=args.workers)

    tracking_rows = []
    event_rows = []
    trajectories = {'protocol': [], 'tci': []}
    for request, result in zip(requests, results):
        patient_id, strategy = request.name.rsplit('-', 1)
        if not result.completed:
            logger.error("%s failed: %s", request.name, result.failure.message)
            continue
        trajectories[strategy].append(result.trajectory)

        metrics = result.tracking(target, start_time=args.eval_start)
        tracking_rows.append({'patient_id': patient_id, 'strategy': strategy, **metrics.to_dict()})
        for event in result.events:
            event_rows.append({'patient_id': patient_id, 'strategy': strategy, **event.to_dict()})

    tracking = pd.DataFrame(tracking_rows)
    tracking.to_csv(log_dir / "tracking.csv", index=False)
    pd.DataFrame(event_rows).to_csv(log_dir / "events.csv", index=False)

    summary = tracking.groupby('strategy')[
        ['mdpe', 'mdape', 'wobble', 'divergence', 'time_in_target', 'max_concentration', 'total_dose']
    ].agg(['mean', 'std'])
    print("\nTracking performance (mean ± std):")
    print(summary.round(3).to_string())

    for strategy, runs in trajectories.items():
        if runs:
            plot_population(runs, title=f"Effect-site Concentration: {strategy}",
                            save_path=figure_dir / f"population_{strategy}.png")

    first = patients[0].patient_id
    for request, result in zip(requests[:2], results[:2]):
        plot_trajectory(result.trajectory, events=result.events,
                        target=target if request.profile is not None else None,
                        title=f"{first}: {request.name.rsplit('-', 1)[1]}",
                        save_path=figure_dir / f"{request.name}.png")

    print(f"\nResults saved to {log_dir}")


if __name__ == "__main__":
    main()
