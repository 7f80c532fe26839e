import enum
import hashlib
import hmac
import logging
import os
import secrets
import sys
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence, TextIO

from tabulate import tabulate

logger = logging.getLogger(__name__)

# ==============================================================================
# 1. Error Handling Classes
# ==============================================================================

class ConfigurationError(Exception):
    """
    Raised for invalid startup configuration (dice arguments, environment).
    Provides a formatted message including an example of correct usage.
    """
    _invocation_command = "python"

    @staticmethod
    def set_invocation_command(command: str):
        """Sets the command used to run the script (e.g., 'python' or 'py')."""
        ConfigurationError._invocation_command = command

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        script_name = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else 'fair_dice.py'
        example = (
            f"{ConfigurationError._invocation_command} {script_name} "
            f"2,2,4,4,9,9 1,1,6,6,8,8 3,3,5,5,7,7"
        )
        return f"\nArgument Error: {self.message}\n\nExample usage:\n{example}\n"

    @classmethod
    def not_enough_dice(cls, count: int) -> "ConfigurationError":
        return cls(f"Please specify at least three dice (got {count}).")

    @classmethod
    def non_integer_value(cls, arg: str) -> "ConfigurationError":
        return cls(f"Invalid die faces: '{arg}'. All dice faces must be integers separated by commas.")

    @classmethod
    def empty_die(cls, arg: str) -> "ConfigurationError":
        return cls(f"Invalid die: '{arg}'. A die must have at least one face.")


class ProtocolError(Exception):
    """Base class for contract violations inside the fair random protocol."""


class InvalidRange(ProtocolError):
    pass


class InvalidCounterValue(ProtocolError):
    pass


class ProtocolStateError(ProtocolError):
    pass


class InputValidationError(ValueError):
    """A reply from the user that is not a valid menu selection."""


class AbortRequested(Exception):
    """The user asked to leave the game from an interactive prompt."""

# ==============================================================================
# 2. Data Structure for a Die
# ==============================================================================

@dataclass(frozen=True)
class Die:
    faces: tuple

    def __post_init__(self):
        if not self.faces:
            raise ValueError("A die must have at least one face.")
        object.__setattr__(self, "faces", tuple(self.faces))

    def __str__(self) -> str:
        return ",".join(map(str, self.faces))

    def __len__(self) -> int:
        return len(self.faces)

    def face(self, index: int) -> int:
        return self.faces[index]

# ==============================================================================
# 3. Command-Line Argument Parser and Configuration
# ==============================================================================

class DiceParser:
    MIN_DICE = 3

    @staticmethod
    def parse(args: Sequence[str]) -> list[Die]:
        if len(args) < DiceParser.MIN_DICE:
            raise ConfigurationError.not_enough_dice(len(args))
        dice_list = []
        for arg in args:
            try:
                faces = [int(f) for f in arg.split(',') if f.strip()]
            except ValueError:
                raise ConfigurationError.non_integer_value(arg) from None
            if not faces:
                raise ConfigurationError.empty_die(arg)
            dice_list.append(Die(tuple(faces)))
        return dice_list


@dataclass(frozen=True)
class GameConfig:
    """
    Startup configuration for one game session.
    Fields:
        dice (tuple): Parsed dice, at least three.
        log_level (str): Name of the logging level (FAIR_DICE_LOG_LEVEL).
    """
    dice: tuple
    log_level: str = "WARNING"


def load_config(argv: Sequence[str], environ: Optional[Mapping[str, str]] = None) -> GameConfig:
    """Build a GameConfig from command-line dice arguments and the environment."""
    if environ is None:
        environ = os.environ
    log_level = environ.get("FAIR_DICE_LOG_LEVEL", "WARNING").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Unknown log level in FAIR_DICE_LOG_LEVEL: '{log_level}'.")
    return GameConfig(dice=tuple(DiceParser.parse(argv)), log_level=log_level)

# ==============================================================================
# 4. Cryptographic Operations Provider
# ==============================================================================

class CryptoProvider:
    """
    Source of randomness for the game. Key and secret generation always go
    through here so a seeded substitute can be passed in for tests.
    """
    KEY_SIZE = 32

    def generate_key(self) -> bytes:
        return secrets.token_bytes(self.KEY_SIZE)

    def generate_secure_random(self, max_val: int) -> int:
        return secrets.randbelow(max_val)

    def choice(self, options: Sequence):
        return secrets.choice(options)

    @staticmethod
    def calculate_hmac(key: bytes, message_int: int) -> str:
        message_bytes = str(message_int).encode('utf-8')
        h = hmac.new(key, message_bytes, hashlib.sha3_256)
        return h.hexdigest()

# ==============================================================================
# 5. Fair Random Generation Protocol
# ==============================================================================

class ProtocolState(enum.Enum):
    COMMITTED = "committed"
    RESULT_COMPUTED = "result_computed"
    REVEALED = "revealed"


@dataclass(frozen=True)
class Reveal:
    key: bytes
    value: int

    @property
    def key_hex(self) -> str:
        return self.key.hex()


class FairRandomProtocol:
    """
    One commit-reveal run producing a shared random number in [0, range_size).

    The house picks a secret value and a 256-bit key at construction and
    publishes HMAC(key, str(value)). The counterpart then supplies its own
    number, the result is (secret + counter) mod range_size, and only after
    that are the key and secret disclosed so the counterpart can check both
    the commitment and the result.

    States: COMMITTED -> RESULT_COMPUTED -> REVEALED. Revealing straight from
    COMMITTED is allowed (aborted run); computing a result after the reveal
    is not.
    """

    def __init__(self, range_size: int, crypto: Optional[CryptoProvider] = None):
        if isinstance(range_size, bool) or not isinstance(range_size, int) or range_size < 1:
            raise InvalidRange(f"Range must be a positive integer, got {range_size!r}.")
        self.crypto = crypto or CryptoProvider()
        self.range_size = range_size
        self._key = self.crypto.generate_key()
        self._value = self.crypto.generate_secure_random(range_size)
        self._state = ProtocolState.COMMITTED
        self._result: Optional[int] = None
        self._commitment = self.crypto.calculate_hmac(self._key, self._value)
        logger.debug("Protocol initiated: range=%d commitment=%s", range_size, self._commitment)

    @property
    def state(self) -> ProtocolState:
        return self._state

    @property
    def result(self) -> Optional[int]:
        return self._result

    def commitment(self) -> str:
        return self._commitment

    def compute_result(self, counter_value: int) -> int:
        if self._state is not ProtocolState.COMMITTED:
            raise ProtocolStateError(
                f"Result can only be computed once, before the reveal (state: {self._state.value})."
            )
        if (isinstance(counter_value, bool) or not isinstance(counter_value, int)
                or not 0 <= counter_value < self.range_size):
            raise InvalidCounterValue(
                f"Counter value must be an integer in 0..{self.range_size - 1}, got {counter_value!r}."
            )
        self._result = (self._value + counter_value) % self.range_size
        self._state = ProtocolState.RESULT_COMPUTED
        logger.debug("Protocol result computed: counter=%d result=%d", counter_value, self._result)
        return self._result

    def reveal(self) -> Reveal:
        if self._state is not ProtocolState.REVEALED:
            if self._state is ProtocolState.COMMITTED:
                logger.debug("Protocol revealed before a result was computed")
            self._state = ProtocolState.REVEALED
            logger.debug("Protocol revealed: value=%d key=%s", self._value, self._key.hex())
        return Reveal(key=self._key, value=self._value)


def verify_commitment(commitment: str, key: bytes, value: int) -> bool:
    """Check a published commitment against the disclosed key and secret."""
    expected = CryptoProvider.calculate_hmac(key, value)
    return hmac.compare_digest(expected, commitment.lower())


def verify_result(reveal: Reveal, counter_value: int, range_size: int, result: int) -> bool:
    return (reveal.value + counter_value) % range_size == result

# ==============================================================================
# 6. Probability Calculation Logic
# ==============================================================================

class ProbabilityCalculator:
    @staticmethod
    def calculate_win_probability(die1: Die, die2: Die) -> float:
        """Fraction of face pairs where die1 shows strictly more than die2. Ties are not wins."""
        wins = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 > f2)
        return wins / (len(die1) * len(die2))

    @staticmethod
    def calculate_tie_probability(die1: Die, die2: Die) -> float:
        ties = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 == f2)
        return ties / (len(die1) * len(die2))

    @staticmethod
    def calculate_matrix(dice: Sequence[Die]) -> list[list[float]]:
        return [
            [ProbabilityCalculator.calculate_win_probability(a, b) for b in dice]
            for a in dice
        ]

# ==============================================================================
# 7. Help Table Generation
# ==============================================================================

class HelpTableGenerator:
    @staticmethod
    def generate_table(all_dice: Sequence[Die], calculator=ProbabilityCalculator) -> str:
        headers = ["User v PC >"] + [str(d) for d in all_dice]
        matrix = calculator.calculate_matrix(all_dice)
        table_data = []
        for i, user_die in enumerate(all_dice):
            row = [str(user_die)]
            for j, prob in enumerate(matrix[i]):
                cell = f"*{prob:.4f}*" if i == j else f"{prob:.4f}"
                row.append(cell)
            table_data.append(row)

        intro = (
            "\n--- Win Probability Table ---\n"
            "This table shows the probability of the User's die (rows) winning against the PC's die (columns).\n"
            "* Diagonal values show probability of a die winning against an identical one.\n"
        )
        return intro + tabulate(table_data, headers=headers, tablefmt="grid", disable_numparse=True)

# ==============================================================================
# 8. Console User Interface
# ==============================================================================

class GameUI:
    """
    Line-based input/output collaborator. Both channels are injected so the
    game never touches the console directly.
    """
    EXIT_TOKEN = 'x'
    HELP_TOKEN = '?'

    def __init__(self, input_func: Callable[[str], str] = input, output: Optional[TextIO] = None):
        self.input_func = input_func
        self.output = output if output is not None else sys.stdout

    def display_message(self, text: str):
        print(text, file=self.output)

    def display_commitment(self, commitment: str):
        self.display_message(f"HMAC: {commitment}")

    def display_reveal(self, reveal: Reveal, name: str = "My choice"):
        self.display_message(f"{name}: {reveal.value} (KEY={reveal.key_hex})")

    def ask(self, prompt: str) -> str:
        return self.input_func(prompt).strip().lower()

    @staticmethod
    def parse_choice(raw: str, option_count: int) -> int:
        # isdigit alone admits characters such as '²' that int() rejects
        if not (raw.isascii() and raw.isdigit()):
            raise InputValidationError(f"'{raw}' is not a menu number.")
        choice = int(raw)
        if not 0 <= choice < option_count:
            raise InputValidationError(f"{choice} is outside 0..{option_count - 1}.")
        return choice

    def get_user_choice(self, prompt: str, options: Sequence[str],
                        on_help: Optional[Callable[[], None]] = None) -> int:
        """
        Show a numbered menu and return the selected index.

        '?' calls on_help (when given) and shows the menu again. 'X' raises
        AbortRequested. Anything else that is not a listed number is reported
        and asked again.
        """
        while True:
            self.display_message(f"\n{prompt}")
            for i, option in enumerate(options):
                self.display_message(f" {i} - {option}")

            self.display_message("\n X - Exit")
            if on_help is not None:
                self.display_message(" ? - Help")

            choice = self.ask("Your choice: ")

            if choice == self.EXIT_TOKEN:
                raise AbortRequested()
            if choice == self.HELP_TOKEN and on_help is not None:
                on_help()
                continue

            try:
                return self.parse_choice(choice, len(options))
            except InputValidationError as e:
                logger.debug("Rejected input: %s", e)
                self.display_message("Invalid choice. Please enter a valid number, '?', or 'X'.")

# ==============================================================================
# 9. Provably Fair Interaction
# ==============================================================================

class FairInteraction:
    def __init__(self, crypto_provider: CryptoProvider, ui: GameUI,
                 on_help: Optional[Callable[[], None]] = None):
        self.crypto = crypto_provider
        self.ui = ui
        self.on_help = on_help

    def determine_first_player(self) -> bool:
        """Returns True when the user moves first (combined result 0)."""
        self.ui.display_message("\nLet's determine who makes the first move.")
        protocol = FairRandomProtocol(2, self.crypto)
        self.ui.display_message(
            f"I have chosen a random value in range 0..1 (HMAC={protocol.commitment()})."
        )

        user_bit = self.ui.get_user_choice("Try to guess my choice.", ["0", "1"], self.on_help)
        result = protocol.compute_result(user_bit)

        self.ui.display_reveal(protocol.reveal())
        return result == 0

    def get_fair_roll_index(self, max_val: int, prompt: str) -> int:
        protocol = FairRandomProtocol(max_val, self.crypto)
        self.ui.display_message(f"I have chosen a random value in range 0..{max_val - 1}.")
        self.ui.display_commitment(protocol.commitment())

        options = [str(i) for i in range(max_val)]
        user_move = self.ui.get_user_choice(prompt, options, self.on_help)
        result = protocol.compute_result(user_move)

        revealed = protocol.reveal()
        self.ui.display_reveal(revealed, name="My number")
        self.ui.display_message(
            f"Fair random number result: ({revealed.value} + {user_move}) mod {max_val} = {result}"
        )
        return result

# ==============================================================================
# 10. Main Game Controller
# ==============================================================================

@dataclass(frozen=True)
class RoundResult:
    user_first: bool
    user_die: Die
    computer_die: Die
    user_roll: int
    computer_roll: int

    @property
    def winner(self) -> Optional[str]:
        """'user', 'computer', or None for a draw."""
        if self.user_roll > self.computer_roll:
            return "user"
        if self.computer_roll > self.user_roll:
            return "computer"
        return None


class GameController:
    def __init__(self, dice: Sequence[Die], ui: GameUI, crypto: Optional[CryptoProvider] = None,
                 help_gen=HelpTableGenerator, calculator=ProbabilityCalculator):
        self.all_dice = list(dice)
        self.ui = ui
        self.crypto = crypto or CryptoProvider()
        self.help_gen = help_gen
        self.calculator = calculator
        self.interaction = FairInteraction(self.crypto, ui, on_help=self.show_help)

    def show_help(self):
        self.ui.display_message(self.help_gen.generate_table(self.all_dice, self.calculator))

    def run(self):
        self.ui.display_message("--- Welcome to the Non-Transitive Dice Game! ---")
        while True:
            self.play_round()
            if not self._ask_play_again():
                self.ui.display_message("Thanks for playing!")
                break

    def play_round(self) -> RoundResult:
        user_goes_first = self.interaction.determine_first_player()

        player_die, computer_die = self._select_dice(user_goes_first)

        self.ui.display_message(f"\nYour die: [{player_die}]")
        self.ui.display_message(f"My die:   [{computer_die}]")
        self.ui.display_message("\n--- Time to roll! ---")

        if user_goes_first:
            player_roll_value = self._roll_for_user(player_die)
            computer_roll_value = self._roll_for_computer(computer_die)
        else:
            computer_roll_value = self._roll_for_computer(computer_die)
            player_roll_value = self._roll_for_user(player_die)

        outcome = RoundResult(
            user_first=user_goes_first,
            user_die=player_die,
            computer_die=computer_die,
            user_roll=player_roll_value,
            computer_roll=computer_roll_value,
        )

        self.ui.display_message("\n--- Results ---")
        self.ui.display_message(f"You rolled {player_roll_value}, I rolled {computer_roll_value}.")
        if outcome.winner == "user":
            self.ui.display_message(f"You won! ({player_roll_value} > {computer_roll_value})")
        elif outcome.winner == "computer":
            self.ui.display_message(f"I won! ({computer_roll_value} > {player_roll_value})")
        else:
            self.ui.display_message(f"It's a draw! ({player_roll_value} = {computer_roll_value})")
        logger.info("Round finished: user=%d computer=%d winner=%s",
                    player_roll_value, computer_roll_value, outcome.winner or "draw")
        return outcome

    def _ask_play_again(self) -> bool:
        """Plain y/n prompt that still honours the 'X' and '?' tokens."""
        while True:
            answer = self.ui.ask("\nPlay another round? (y/n): ")
            if answer == self.ui.EXIT_TOKEN:
                raise AbortRequested()
            if answer == self.ui.HELP_TOKEN:
                self.show_help()
                continue
            return answer == 'y'

    def _roll_for_computer(self, die: Die) -> int:
        self.ui.display_message("\nIt is my time to roll.")
        index = self.interaction.get_fair_roll_index(len(die), f"Add your number modulo {len(die)}.")
        value = die.face(index)
        self.ui.display_message(f"Result of my roll is {value}.")
        return value

    def _roll_for_user(self, die: Die) -> int:
        self.ui.display_message("\nIt is your time to roll.")
        index = self.interaction.get_fair_roll_index(len(die), f"Add your number modulo {len(die)}.")
        value = die.face(index)
        self.ui.display_message(f"Result of your roll is {value}.")
        return value

    def _select_dice(self, user_goes_first: bool):
        available_dice = list(self.all_dice)
        if user_goes_first:
            self.ui.display_message("You make the first move and choose the dice.")
            player_die = self._get_player_die_choice(available_dice)
            available_dice.remove(player_die)
            computer_die = self.crypto.choice(available_dice)
            self.ui.display_message(f"I choose dice [{computer_die}].")
        else:
            self.ui.display_message("I make the first move and choose the dice.")
            computer_die = self.crypto.choice(available_dice)
            available_dice.remove(computer_die)
            self.ui.display_message(f"I choose dice [{computer_die}].")
            player_die = self._get_player_die_choice(available_dice)
        return player_die, computer_die

    def _get_player_die_choice(self, available_dice: list[Die]) -> Die:
        options = [str(d) for d in available_dice]
        index = self.ui.get_user_choice("Select your dice:", options, self.show_help)
        self.ui.display_message(f"You choose dice [{available_dice[index]}].")
        return available_dice[index]

# ==============================================================================
# 11. Main Execution Block
# ==============================================================================

def setup_logging(level: str = "WARNING") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[Sequence[str]] = None, ui: Optional[GameUI] = None) -> int:
    # Dynamically determine the command used to invoke the script
    if 'py.exe' in sys.executable.lower():
        ConfigurationError.set_invocation_command('py')
    else:
        ConfigurationError.set_invocation_command('python')

    if argv is None:
        argv = sys.argv[1:]

    try:
        config = load_config(argv)
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 1

    setup_logging(config.log_level)
    ui = ui or GameUI()
    controller = GameController(config.dice, ui)

    try:
        controller.run()
    except AbortRequested:
        pass
    except (KeyboardInterrupt, EOFError):
        ui.display_message("\nExiting game. Goodbye!")
    except ProtocolError:
        logger.exception("Fair random protocol violated")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
