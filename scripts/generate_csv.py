"""Generate sample site CSV files for testing the site importer."""
import csv
import random
import sys
from datetime import date, timedelta

HEADER = [
    "SITE ID",
    "SITE NAME",
    "STATE",
    "EXP DATE",
    "TOTAL RENTAL (RM)",
    "TOTAL PAYMENT TO PAY (RM)",
    "DEPOSIT (RM)",
]

STATES = [
    "Johor",
    "Kedah",
    "Kelantan",
    "Melaka",
    "Negeri Sembilan",
    "Pahang",
    "Perak",
    "Selangor",
    "Sabah",
    "Sarawak",
]


def generate_rows(num_rows: int, duplicate_ratio: float = 0.0, seed: int = None) -> list:
    """
    Build random site rows the way the source spreadsheets format them.

    Args:
        num_rows: Number of rows to generate
        duplicate_ratio: Share of rows that repeat an earlier SITE ID
        seed: Seed for reproducible output

    Returns:
        List of row dicts keyed by HEADER labels
    """
    rng = random.Random(seed)
    rows = []
    for i in range(num_rows):
        if rows and rng.random() < duplicate_ratio:
            site_id = rng.choice(rows)["SITE ID"]
        else:
            site_id = f"SITE-{i + 1:06d}"

        rental = rng.randint(500, 20000)
        expiry = date.today() + timedelta(days=rng.randint(-90, 3 * 365))
        rows.append(
            {
                "SITE ID": site_id,
                "SITE NAME": f"{rng.choice(STATES)} Tower {rng.randint(1, 999)}",
                "STATE": rng.choice(STATES),
                "EXP DATE": expiry.strftime("%d/%m/%Y") if rng.random() > 0.05 else "-",
                "TOTAL RENTAL (RM)": f"RM {rental:,}.00",
                "TOTAL PAYMENT TO PAY (RM)": f"RM {rental * 12:,}.00",
                "DEPOSIT (RM)": f"{rental * 2:,}",
            }
        )
    return rows


def generate_csv(num_rows: int, output_file: str, duplicate_ratio: float = 0.0) -> None:
    """Write ``num_rows`` random site rows to ``output_file``."""
    with open(output_file, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=HEADER)
        writer.writeheader()
        for i, row in enumerate(generate_rows(num_rows, duplicate_ratio), start=1):
            writer.writerow(row)
            if i % 10000 == 0:
                print(f"Generated {i:,} rows...")

    print(f"✅ Successfully generated {num_rows:,} sites in {output_file}")


def main():
    """Main function to parse arguments and generate CSV."""
    if len(sys.argv) < 2:
        print("Usage: python generate_csv.py <num_rows> [output_file] [duplicate_ratio]")
        print("Example: python generate_csv.py 530 sites_530.csv 0.1")
        sys.exit(1)

    num_rows = int(sys.argv[1])
    output_file = sys.argv[2] if len(sys.argv) > 2 else f"sites_{num_rows}.csv"
    duplicate_ratio = float(sys.argv[3]) if len(sys.argv) > 3 else 0.0

    print(f"Generating CSV with {num_rows:,} rows...")
    generate_csv(num_rows, output_file, duplicate_ratio)


if __name__ == "__main__":
    main()
